"""Utility functions for resource parsing, comparison and safe updates."""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Sequence, TypeVar

from kubernetes.client.rest import ApiException
from kubernetes.utils import parse_quantity

from .config import CONFLICT_RETRY_ATTEMPTS, RESOURCE_TOLERANCE

logger = logging.getLogger(__name__)

T = TypeVar("T")


def parse_cpu(cpu_string) -> float:
    """
    Parse CPU string to cores (float).

    Examples:
        "100m" -> 0.1
        "1" -> 1.0
        0.25 -> 0.25
    """
    if cpu_string is None or cpu_string == "":
        return 0.0
    return float(parse_quantity(str(cpu_string).strip()))


def parse_memory(memory_string) -> Decimal:
    """
    Parse memory string to bytes.

    Accepts every Kubernetes quantity form, including the milli-byte values
    the API server writes back for fractional binary sizes.

    Examples:
        "128Mi" -> 134217728
        "1Gi" -> 1073741824
        "512M" -> 512000000
        "1126400m" -> 1126.4

    Raises:
        ValueError: ``memory_string`` is not a valid quantity
    """
    if memory_string is None or memory_string == "":
        return Decimal(0)
    return parse_quantity(str(memory_string).strip())


def resource_list_matches(actual: Optional[Dict[str, Any]], desired: Dict[str, Any]) -> bool:
    """
    Compare a requests/limits block with the desired one.

    Only the keys present in ``desired`` are compared. CPU is compared in
    cores within RESOURCE_TOLERANCE, memory in bytes.
    """
    actual = actual or {}
    for key, desired_value in desired.items():
        if key not in actual:
            return False
        if key == "cpu":
            if abs(parse_cpu(actual[key]) - parse_cpu(desired_value)) > RESOURCE_TOLERANCE:
                return False
        elif key == "memory":
            if parse_memory(actual[key]) != parse_memory(desired_value):
                return False
        elif str(actual[key]) != str(desired_value):
            return False
    return True


def requirements_match(actual: Optional[Dict[str, Any]], desired: Dict[str, Dict[str, Any]]) -> bool:
    """Compare a full ``{"requests": ..., "limits": ...}`` block."""
    actual = actual or {}
    return all(
        resource_list_matches(actual.get(section), values)
        for section, values in desired.items()
    )


def get_path(obj: Dict[str, Any], path: Sequence[str]) -> Any:
    """Return the value at ``path`` in a nested dict, or None."""
    current: Any = obj
    for key in path:
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def set_path(obj: Dict[str, Any], path: Sequence[str], value: Any) -> None:
    """Set the value at ``path`` in a nested dict, creating parents."""
    current = obj
    for key in path[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    current[path[-1]] = value


def retry_on_conflict(update: Callable[[], T], attempts: int = CONFLICT_RETRY_ATTEMPTS) -> T:
    """
    Run a read-modify-write function, retrying on resourceVersion conflicts.

    ``update`` must re-read the object it writes on every call so a retry
    works on fresh data.
    """
    attempt = 1
    while True:
        try:
            return update()
        except ApiException as e:
            if e.status != 409 or attempt >= attempts:
                raise
            logger.debug(f"Conflict on update (attempt {attempt}/{attempts}), retrying")
            attempt += 1


def now_timestamp() -> str:
    """Current UTC time in the RFC 3339 form the API server uses."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

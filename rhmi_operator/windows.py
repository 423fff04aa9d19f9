"""Backup and maintenance windows for the cloud resource strategies."""

import copy
import json
import logging
import re
from typing import Any, Dict, List, Tuple

from kubernetes.client.rest import ApiException

from .config import (
    CRO_STRATEGY_CONFIG_MAP,
    CRO_STRATEGY_TIER,
    POSTGRES_STRATEGY_KEY,
    REDIS_STRATEGY_KEY,
)
from .crd_client import ClusterClient
from .errors import WindowFormatError
from .installation import Installation
from .utils import retry_on_conflict

logger = logging.getLogger(__name__)

WINDOW_LENGTH_MINUTES = 60

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _parse_time(value: str, raw: str) -> Tuple[int, int]:
    match = _TIME_RE.match(value)
    if not match:
        raise WindowFormatError(f"invalid time '{raw}', expected HH:MM")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise WindowFormatError(f"invalid time '{raw}', hour must be 0-23 and minute 0-59")
    return hour, minute


def _format(minutes: int) -> str:
    minutes %= 24 * 60
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def _parse_weekly(apply_from: str) -> Tuple[str, int, int]:
    parts = apply_from.strip().split()
    if len(parts) != 2:
        raise WindowFormatError(f"invalid maintenance window '{apply_from}', expected 'DDD HH:MM'")
    day = parts[0].lower()
    if day not in _WEEKDAYS:
        raise WindowFormatError(f"invalid maintenance window '{apply_from}', unknown weekday '{parts[0]}'")
    hour, minute = _parse_time(parts[1], apply_from)
    return day, hour, minute


def backup_window(apply_on: str) -> str:
    """
    Daily one hour window starting at ``apply_on``.

    Examples:
        "12:05" -> "12:05-13:05"
        "23:30" -> "23:30-00:30"

    Raises:
        WindowFormatError: ``apply_on`` is not a valid HH:MM time
    """
    hour, minute = _parse_time(apply_on.strip(), apply_on)
    start = hour * 60 + minute
    return f"{_format(start)}-{_format(start + WINDOW_LENGTH_MINUTES)}"


def maintenance_window(apply_from: str) -> str:
    """
    Weekly one hour window starting at ``apply_from``.

    The day is lowercased and repeated on the end of the window, also
    when the hour wraps past midnight.

    Examples:
        "Thu 14:15" -> "thu:14:15-thu:15:15"
        "Mon 23:45" -> "mon:23:45-mon:00:45"

    Raises:
        WindowFormatError: ``apply_from`` is not a valid 'DDD HH:MM' value
    """
    day, hour, minute = _parse_weekly(apply_from)
    start = hour * 60 + minute
    return f"{day}:{_format(start)}-{day}:{_format(start + WINDOW_LENGTH_MINUTES)}"


def validate_no_overlap(apply_on: str, apply_from: str) -> None:
    """
    Check the backup and maintenance windows do not overlap.

    Only the time of day is compared; each window is one hour long and is
    not wrapped past midnight.

    Raises:
        WindowFormatError: either value is malformed, or the windows overlap
    """
    backup_hour, backup_minute = _parse_time(apply_on.strip(), apply_on)
    _, maintenance_hour, maintenance_minute = _parse_weekly(apply_from)

    backup_start = backup_hour * 60 + backup_minute
    backup_end = backup_start + WINDOW_LENGTH_MINUTES
    maintenance_start = maintenance_hour * 60 + maintenance_minute
    maintenance_end = maintenance_start + WINDOW_LENGTH_MINUTES

    if backup_start <= maintenance_end and backup_end >= maintenance_start:
        raise WindowFormatError(
            f"backup window '{apply_on}' and maintenance window '{apply_from}' overlap, "
            f"they must be at least one hour apart"
        )


def build_override(maintenance: str, backup: str) -> Dict[str, Dict[str, str]]:
    """
    Create-strategy fields for every datastore type.

    Args:
        maintenance: Maintenance window, e.g. "thu:02:00-thu:03:00"
        backup: Backup window, e.g. "03:01-04:01"

    Returns:
        Strategy key -> createStrategy fields to set
    """
    return {
        POSTGRES_STRATEGY_KEY: {
            "PreferredBackupWindow": backup,
            "PreferredMaintenanceWindow": maintenance,
        },
        REDIS_STRATEGY_KEY: {
            "SnapshotWindow": backup,
            "PreferredMaintenanceWindow": maintenance,
        },
    }


def _empty_tier() -> Dict[str, Any]:
    return {"region": "", "createStrategy": {}, "deleteStrategy": {}}


def merge_strategy(raw: str, fields: Dict[str, str], tier: str = CRO_STRATEGY_TIER) -> Dict[str, Any]:
    """
    Set ``fields`` on the createStrategy of ``tier`` in a serialized strategy map.

    Other tiers and createStrategy fields are kept as they are.

    Raises:
        ValueError: ``raw`` is not a JSON object
    """
    strategies = json.loads(raw) if raw else {}
    if not isinstance(strategies, dict):
        raise ValueError("strategy map must be a JSON object")

    merged = copy.deepcopy(strategies)
    tier_strategy = merged.get(tier)
    if not isinstance(tier_strategy, dict):
        tier_strategy = _empty_tier()
        merged[tier] = tier_strategy

    create_strategy = tier_strategy.get("createStrategy")
    if not isinstance(create_strategy, dict):
        create_strategy = {}
    create_strategy.update(fields)
    tier_strategy["createStrategy"] = create_strategy
    return merged


class StrategyOverrideReconciler:
    """Writes the backup and maintenance windows into the AWS strategy config map."""

    def __init__(self, cluster: ClusterClient):
        self.cluster = cluster

    def reconcile(self, installation: Installation) -> List[str]:
        """
        Run the strategy override step of a pass.

        Returns:
            List of error messages, empty when the step succeeded
        """
        if installation.use_cluster_storage:
            logger.debug("Cluster storage in use, skipping strategy override")
            return []

        try:
            validate_no_overlap(installation.backup_apply_on, installation.maintenance_apply_from)
            override = build_override(
                maintenance_window(installation.maintenance_apply_from),
                backup_window(installation.backup_apply_on),
            )
        except WindowFormatError as e:
            logger.error(f"Invalid backup or maintenance window: {e}")
            return [str(e)]

        namespace = installation.namespace

        def update() -> str:
            config_map = self.cluster.get_config_map(namespace, CRO_STRATEGY_CONFIG_MAP)
            if config_map is None:
                body = {
                    "apiVersion": "v1",
                    "kind": "ConfigMap",
                    "metadata": {"name": CRO_STRATEGY_CONFIG_MAP, "namespace": namespace},
                    "data": {
                        key: json.dumps(merge_strategy("", fields), sort_keys=True)
                        for key, fields in override.items()
                    },
                }
                self.cluster.create_config_map(namespace, body)
                return "created"

            data = dict(config_map.get("data") or {})
            changed = False
            for key, fields in override.items():
                raw = data.get(key, "")
                merged = merge_strategy(raw, fields)
                if not raw or json.loads(raw) != merged:
                    data[key] = json.dumps(merged, sort_keys=True)
                    changed = True

            if not changed:
                return "unchanged"

            updated = copy.deepcopy(config_map)
            updated["data"] = data
            self.cluster.replace_config_map(namespace, CRO_STRATEGY_CONFIG_MAP, updated)
            return "updated"

        try:
            result = retry_on_conflict(update)
        except ValueError as e:
            message = f"invalid strategy in config map {namespace}/{CRO_STRATEGY_CONFIG_MAP}: {e}"
            logger.error(message)
            return [message]
        except ApiException as e:
            message = f"failed to update config map {namespace}/{CRO_STRATEGY_CONFIG_MAP}: {e.reason}"
            logger.error(message)
            return [message]

        if result != "unchanged":
            logger.info(f"Strategy config map {namespace}/{CRO_STRATEGY_CONFIG_MAP} {result}")
        return []

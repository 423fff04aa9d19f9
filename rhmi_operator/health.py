"""Health conditions reported to the add-on instance."""

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from kubernetes.client.rest import ApiException

from .config import (
    ADDON_GROUP,
    ADDON_INSTANCE_NAME,
    ADDON_PLURAL,
    ADDON_VERSION,
    HEARTBEAT_INTERVAL_SECONDS,
)
from .crd_client import ClusterClient
from .errors import UnknownInstallationTypeError
from .installation import Installation, Phase
from .stages import CORE_PRODUCTS, product_namespace_suffix, products_for_type
from .utils import now_timestamp, retry_on_conflict

logger = logging.getLogger(__name__)

CONDITION_INSTALLED = "Installed"
CONDITION_HEALTHY = "Healthy"
CONDITION_DEGRADED = "Degraded"

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def _status(value: bool) -> str:
    return "True" if value else "False"


def set_condition(conditions: List[Dict[str, Any]], condition_type: str, status: bool,
                  reason: str, message: str, now: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Set a condition in a list of conditions, in place.

    The transition time only moves when the status changes.
    """
    now = now or now_timestamp()
    new_status = _status(status)

    for condition in conditions:
        if condition.get("type") != condition_type:
            continue
        if condition.get("status") != new_status or not condition.get("lastTransitionTime"):
            condition["lastTransitionTime"] = now
        condition["status"] = new_status
        condition["reason"] = reason
        condition["message"] = message
        return conditions

    conditions.append({
        "type": condition_type,
        "status": new_status,
        "reason": reason,
        "message": message,
        "lastTransitionTime": now,
    })
    return conditions


class HealthAggregator:
    """Derives Installed, Healthy and Degraded for an installation."""

    def __init__(self, cluster: ClusterClient):
        self.cluster = cluster

    def degraded_components(self, installation: Installation) -> List[str]:
        """
        Core products of this installation type that are not healthy.

        A product is degraded when it is not Completed or its namespace no
        longer exists.

        Returns:
            Sorted list of "product: reason" entries
        """
        try:
            products = products_for_type(installation.type)
        except UnknownInstallationTypeError:
            return []

        degraded = []
        for product in sorted(CORE_PRODUCTS.intersection(products)):
            product_status = installation.get_product_status(product)
            if product_status is None or product_status.phase != Phase.COMPLETED:
                phase = product_status.phase.value if product_status else ""
                degraded.append(f"{product}: phase is '{phase or 'not started'}'")
                continue

            namespace = installation.product_namespace(product_namespace_suffix(product))
            try:
                exists = self.cluster.namespace_exists(namespace)
            except ApiException as e:
                logger.warning(f"Could not check namespace {namespace} for {product}: {e.reason}")
                continue
            if not exists:
                degraded.append(f"{product}: namespace {namespace} is missing")

        return degraded

    def build_conditions(self, installation: Installation, healthy: bool,
                         previous: Optional[List[Dict[str, Any]]] = None,
                         now: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Compute the health conditions.

        Args:
            installation: The installation after this pass
            healthy: Whether the pass finished without a control-loop error
            previous: Conditions currently reported, for transition times
            now: Timestamp for changed conditions

        Returns:
            New list of conditions
        """
        conditions = copy.deepcopy(previous or [])

        installed = installation.is_installed() or any(
            c.get("type") == CONDITION_INSTALLED and c.get("status") == "True" for c in conditions
        )
        if not installed:
            installed_message = "installation has not completed yet"
        elif installation.status.version:
            installed_message = f"installed version {installation.status.version}"
        else:
            installed_message = "installation completed"
        set_condition(
            conditions, CONDITION_INSTALLED, installed,
            "InstallationComplete" if installed else "InstallationPending",
            installed_message,
            now,
        )

        set_condition(
            conditions, CONDITION_HEALTHY, healthy,
            "ReconcileSucceeded" if healthy else "ReconcileFailed",
            "" if healthy else installation.status.last_error,
            now,
        )

        degraded = self.degraded_components(installation)
        set_condition(
            conditions, CONDITION_DEGRADED, bool(degraded),
            "ComponentsDegraded" if degraded else "AllComponentsHealthy",
            "; ".join(degraded),
            now,
        )

        return conditions

    def report(self, installation: Installation, healthy: bool) -> List[str]:
        """
        Write the conditions to the add-on instance.

        The status is written when a condition changed, or when the last
        heartbeat is older than HEARTBEAT_INTERVAL_SECONDS.

        Returns:
            List of error messages, empty when the step succeeded
        """
        namespace = installation.namespace

        def update() -> str:
            addon = self.cluster.get_custom_object(
                ADDON_GROUP, ADDON_VERSION, ADDON_PLURAL, namespace, ADDON_INSTANCE_NAME)
            if addon is None:
                return "missing"

            status = addon.get("status") or {}
            previous = status.get("conditions") or []
            now = now_timestamp()
            conditions = self.build_conditions(installation, healthy, previous, now)

            if conditions == previous and not _heartbeat_due(status.get("lastHeartbeatTime")):
                return "unchanged"

            updated = copy.deepcopy(addon)
            updated["status"] = dict(status, conditions=conditions, lastHeartbeatTime=now)
            self.cluster.replace_custom_object_status(
                ADDON_GROUP, ADDON_VERSION, ADDON_PLURAL, namespace, ADDON_INSTANCE_NAME, updated)
            return "updated"

        try:
            result = retry_on_conflict(update)
        except ApiException as e:
            message = f"failed to report health to {namespace}/{ADDON_INSTANCE_NAME}: {e.reason}"
            logger.error(message)
            return [message]

        if result == "missing":
            logger.debug(f"Add-on instance {namespace}/{ADDON_INSTANCE_NAME} not found, skipping health report")
        elif result == "updated":
            logger.debug(f"Reported health to {namespace}/{ADDON_INSTANCE_NAME}")
        return []


def _heartbeat_due(last_heartbeat: Optional[str]) -> bool:
    if not last_heartbeat:
        return True
    try:
        last = datetime.strptime(last_heartbeat, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return True
    return (datetime.now(timezone.utc) - last).total_seconds() >= HEARTBEAT_INTERVAL_SECONDS

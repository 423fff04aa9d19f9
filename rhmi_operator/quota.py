"""Quota engine: selects a tier and propagates it to the governed resources."""

import logging
import os
from typing import List, Optional, Tuple

from .config import (
    QUOTA_CONFIG_MAP_KEY,
    QUOTA_CONFIG_MAP_NAME,
    QUOTA_ENV_VAR,
    QUOTA_INSTALLATION_TYPES,
    QUOTA_PARAM_NAME,
    QUOTA_PARAMS_SECRET,
    TRIAL_QUOTA_PARAM_NAME,
)
from .crd_client import ClusterClient
from .errors import QuotaNotFoundError
from .installation import Installation, Phase
from .quota_table import QuotaTable, default_quota_config_json
from .reconciler import GOVERNED_RESOURCES, QuotaResourceReconciler
from .stages import PRODUCT_MARIN3R

logger = logging.getLogger(__name__)

# Statuses of a governed resource that count as "read matching the tier"
MATCHED_STATUSES = ("compliant",)


def alert_thresholds(requests_per_unit: int) -> Tuple[int, int, int]:
    """
    Alert thresholds for the three API usage alert levels.

    ``requests_per_unit`` is the per-minute rate limit; the levels cover
    4 hours, 2 hours and 30 minutes of traffic at that rate.
    """
    return (
        requests_per_unit * 60 * 4,
        requests_per_unit * 60 * 2,
        requests_per_unit * 30,
    )


class QuotaEngine:
    """
    Keeps the governed resources sized for the selected quota tier.

    The installation status records the converged tier in ``quota`` and
    a pending tier in ``toQuota``. A tier only converges once every
    governed resource is read already matching it, so a pass that has to
    rewrite anything leaves the tier pending until the next pass.
    """

    def __init__(self, cluster: ClusterClient, table: Optional[QuotaTable] = None,
                 resource_reconciler: Optional[QuotaResourceReconciler] = None):
        self.cluster = cluster
        self.table = table
        self.resource_reconciler = resource_reconciler or QuotaResourceReconciler(cluster)

    def reconcile(self, installation: Installation) -> List[str]:
        """
        Run the quota step of a pass.

        Returns:
            List of error messages, empty when the step succeeded
        """
        if installation.type not in QUOTA_INSTALLATION_TYPES:
            logger.debug(f"Quota not applicable to installation type {installation.type}")
            return []

        param = self.read_quota_param(installation.namespace)
        if not param:
            message = f"no quota parameter found in secret {QUOTA_PARAMS_SECRET} or env var {QUOTA_ENV_VAR}"
            logger.error(message)
            return [message]

        try:
            self.table = self.load_table(installation.namespace)
        except ValueError as e:
            message = f"invalid quota config in config map {QUOTA_CONFIG_MAP_NAME}: {e}"
            logger.error(message)
            return [message]

        _, errors = self.apply_quota(installation, param)
        return errors

    def load_table(self, namespace: str) -> QuotaTable:
        """
        Read the quota table from its config map, seeding the bundled default.

        Raises:
            ValueError: the stored table is not valid JSON or not a list
        """
        config_map = self.cluster.get_config_map(namespace, QUOTA_CONFIG_MAP_NAME)

        if config_map is None:
            raw = default_quota_config_json()
            body = {
                "apiVersion": "v1",
                "kind": "ConfigMap",
                "metadata": {"name": QUOTA_CONFIG_MAP_NAME, "namespace": namespace},
                "data": {QUOTA_CONFIG_MAP_KEY: raw},
            }
            self.cluster.create_config_map(namespace, body)
            logger.info(f"Created quota config map {namespace}/{QUOTA_CONFIG_MAP_NAME} with default tiers")
            return QuotaTable.from_json(raw)

        raw = (config_map.get("data") or {}).get(QUOTA_CONFIG_MAP_KEY)
        if not raw:
            raise ValueError(f"key {QUOTA_CONFIG_MAP_KEY} is missing")
        return QuotaTable.from_json(raw)

    def read_quota_param(self, namespace: str) -> str:
        """Tier parameter from the add-on parameters secret, else the environment."""
        for key in (QUOTA_PARAM_NAME, TRIAL_QUOTA_PARAM_NAME):
            value = self.cluster.get_secret_value(namespace, QUOTA_PARAMS_SECRET, key)
            if value and value.strip():
                return value.strip()
        return os.getenv(QUOTA_ENV_VAR, "").strip()

    def apply_quota(self, installation: Installation, tier_param: str) -> Tuple[str, List[str]]:
        """
        Apply the tier selected by ``tier_param`` to the governed resources.

        Args:
            installation: The installation; ``status.quota`` and
                ``status.toQuota`` are updated in place
            tier_param: Tier parameter, e.g. "200"

        Returns:
            Tuple of (converged quota name or "" when not converged, errors)
        """
        if self.table is None:
            self.table = self.load_table(installation.namespace)

        status = installation.status
        try:
            quota = self.table.lookup(tier_param)
        except QuotaNotFoundError as e:
            logger.error(str(e))
            return "", [str(e)]

        if (quota.name != status.quota or status.to_quota) and status.to_quota != quota.name:
            logger.info(f"Quota change requested: {status.quota or 'none'} -> {quota.name}")
            status.to_quota = quota.name

        errors: List[str] = []
        matched = True

        for resource in GOVERNED_RESOURCES:
            product_status = installation.get_product_status(resource.product)
            if product_status is None:
                # product is not part of this installation type
                continue
            if product_status.phase != Phase.COMPLETED:
                logger.debug(f"Skipping {resource.kind} {resource.name}, {resource.product} is not completed")
                matched = False
                continue

            result = self.resource_reconciler.reconcile_resource(installation, resource, quota)
            if result["status"] not in MATCHED_STATUSES:
                matched = False
            if result["status"] in ("missing", "error"):
                errors.append(result["message"])

        marin3r = installation.get_product_status(PRODUCT_MARIN3R)
        if marin3r is not None:
            if marin3r.phase == Phase.COMPLETED:
                thresholds = alert_thresholds(quota.rate_limit.requests_per_unit)
                for result in self.resource_reconciler.reconcile_alert_rules(installation, quota, thresholds):
                    if result["status"] not in MATCHED_STATUSES:
                        matched = False
                    if result["status"] == "error":
                        errors.append(result["message"])
            else:
                matched = False

        if matched and not errors:
            if status.quota != quota.name or status.to_quota:
                logger.info(f"Quota {quota.name} converged")
            status.quota = quota.name
            status.to_quota = ""
            return quota.name, errors

        logger.info(f"Quota {quota.name} not converged yet")
        return "", errors

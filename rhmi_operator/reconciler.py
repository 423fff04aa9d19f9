"""Applies quota resource configuration to the live resources it governs."""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from kubernetes.client.rest import ApiException

from .config import (
    ALERT_RULE_METRIC,
    ALERT_RULE_NAMES,
    ALERT_RULE_NAMESPACE_SUFFIX,
    ALERT_RULE_PERIODS,
)
from .crd_client import ClusterClient
from .installation import Installation
from .quota_table import (
    APICAST_PRODUCTION_NAME,
    APICAST_STAGING_NAME,
    BACKEND_LISTENER_NAME,
    BACKEND_WORKER_NAME,
    GRAFANA_NAME,
    KEYCLOAK_NAME,
    RATE_LIMIT_NAME,
    ComponentConfig,
    QuotaConfig,
)
from .stages import PRODUCT_3SCALE, PRODUCT_GRAFANA, PRODUCT_MARIN3R, PRODUCT_RHSSO_USER
from .utils import get_path, requirements_match, retry_on_conflict, set_path

logger = logging.getLogger(__name__)

DEPLOYMENT_KIND = "Deployment"

PROMETHEUS_RULE_GROUP = "monitoring.coreos.com"
PROMETHEUS_RULE_VERSION = "v1"
PROMETHEUS_RULE_PLURAL = "prometheusrules"


@dataclass(frozen=True)
class ComponentBinding:
    """Where a quota component lives inside a resource."""
    component: str
    replicas_path: Tuple[str, ...]
    # None means every container of the pod template
    resources_path: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class GovernedResource:
    """A live resource whose spec is driven by the active quota."""
    product: str
    kind: str
    name: str
    namespace_suffix: str
    bindings: Tuple[ComponentBinding, ...]
    group: str = ""
    version: str = ""
    plural: str = ""

    def namespace(self, installation: Installation) -> str:
        return installation.product_namespace(self.namespace_suffix)


def _api_manager_binding(component: str, *path: str) -> ComponentBinding:
    return ComponentBinding(
        component=component,
        replicas_path=("spec",) + path + ("replicas",),
        resources_path=("spec",) + path + ("resources",),
    )


GOVERNED_RESOURCES: Tuple[GovernedResource, ...] = (
    GovernedResource(
        product=PRODUCT_3SCALE,
        kind="APIManager",
        name="3scale",
        namespace_suffix="3scale",
        group="apps.3scale.net",
        version="v1alpha1",
        plural="apimanagers",
        bindings=(
            _api_manager_binding(APICAST_PRODUCTION_NAME, "apicast", "productionSpec"),
            _api_manager_binding(APICAST_STAGING_NAME, "apicast", "stagingSpec"),
            _api_manager_binding(BACKEND_LISTENER_NAME, "backend", "listenerSpec"),
            _api_manager_binding(BACKEND_WORKER_NAME, "backend", "workerSpec"),
        ),
    ),
    GovernedResource(
        product=PRODUCT_RHSSO_USER,
        kind="Keycloak",
        name="rhssouser",
        namespace_suffix="user-sso",
        group="keycloak.org",
        version="v1alpha1",
        plural="keycloaks",
        bindings=(
            ComponentBinding(
                component=KEYCLOAK_NAME,
                replicas_path=("spec", "instances"),
                resources_path=("spec", "keycloakDeploymentSpec", "resources"),
            ),
        ),
    ),
    GovernedResource(
        product=PRODUCT_MARIN3R,
        kind=DEPLOYMENT_KIND,
        name=RATE_LIMIT_NAME,
        namespace_suffix="marin3r",
        bindings=(ComponentBinding(RATE_LIMIT_NAME, ("spec", "replicas")),),
    ),
    GovernedResource(
        product=PRODUCT_GRAFANA,
        kind=DEPLOYMENT_KIND,
        name=GRAFANA_NAME,
        namespace_suffix="customer-monitoring",
        bindings=(ComponentBinding(GRAFANA_NAME, ("spec", "replicas")),),
    ),
)


class QuotaResourceReconciler:
    """Reconciles governed resources to match a quota tier."""

    def __init__(self, cluster: ClusterClient):
        self.cluster = cluster

    def needs_reconciliation(self, obj: Dict[str, Any], resource: GovernedResource,
                             quota: QuotaConfig) -> bool:
        """
        Check if a resource differs from the quota.

        Args:
            obj: The resource as read from the cluster
            resource: Where the quota components live in it
            quota: The quota tier

        Returns:
            True if any replica count or resource requirement differs
        """
        for binding in resource.bindings:
            config = quota.get_component(binding.component)
            if config is None:
                continue

            if get_path(obj, binding.replicas_path) != config.replicas:
                logger.debug(f"{resource.kind} {resource.name} replicas of {binding.component} don't match quota")
                return True

            for requirements in self._resource_blocks(obj, binding):
                if not requirements_match(requirements, config.resources()):
                    logger.debug(f"{resource.kind} {resource.name} resources of {binding.component} don't match quota")
                    return True

        return False

    def reconcile_resource(self, installation: Installation, resource: GovernedResource,
                           quota: QuotaConfig) -> Dict[str, Any]:
        """
        Reconcile one governed resource to match the quota.

        Returns:
            Result dict; status is "compliant" when the resource was read
            already matching, "reconciled" when it was rewritten, "missing"
            or "error" otherwise
        """
        namespace = resource.namespace(installation)
        key = f"{namespace}/{resource.name}"

        result = {
            "kind": resource.kind,
            "name": resource.name,
            "namespace": namespace,
            "status": "unchanged",
            "message": ""
        }

        def update() -> str:
            obj = self._read(resource, namespace)
            if obj is None:
                return "missing"
            if not self.needs_reconciliation(obj, resource, quota):
                return "compliant"

            desired = copy.deepcopy(obj)
            self._apply(desired, resource, quota)
            self._write(resource, namespace, desired)
            logger.info(f"Reconciled {resource.kind} {key} to quota {quota.name}")
            return "reconciled"

        try:
            result["status"] = retry_on_conflict(update)
        except ApiException as e:
            logger.error(f"Error reconciling {resource.kind} {key}: {e}")
            result["status"] = "error"
            result["message"] = f"failed to reconcile {resource.kind} {key}: {e.reason}"
            return result
        except (ValueError, TypeError) as e:
            logger.error(f"Invalid quantity in {resource.kind} {key}: {e}")
            result["status"] = "error"
            result["message"] = f"failed to compare {resource.kind} {key} with quota {quota.name}: {e}"
            return result

        if result["status"] == "missing":
            result["message"] = f"{resource.kind} {key} not found"
            logger.warning(result["message"])

        return result

    def reconcile_alert_rules(self, installation: Installation, quota: QuotaConfig,
                              thresholds: Sequence[int]) -> List[Dict[str, Any]]:
        """Create or update the API usage alert rules with the quota thresholds."""
        namespace = installation.product_namespace(ALERT_RULE_NAMESPACE_SUFFIX)
        results = []

        for level, (rule_name, period, threshold) in enumerate(
                zip(ALERT_RULE_NAMES, ALERT_RULE_PERIODS, thresholds), start=1):
            desired = build_alert_rule(rule_name, namespace, level, period, threshold, quota)
            results.append(self._upsert_alert_rule(namespace, rule_name, desired))

        return results

    def _upsert_alert_rule(self, namespace: str, name: str, desired: Dict[str, Any]) -> Dict[str, Any]:
        key = f"{namespace}/{name}"
        result = {
            "kind": "PrometheusRule",
            "name": name,
            "namespace": namespace,
            "status": "unchanged",
            "message": ""
        }

        def update() -> str:
            current = self.cluster.get_custom_object(
                PROMETHEUS_RULE_GROUP, PROMETHEUS_RULE_VERSION, PROMETHEUS_RULE_PLURAL, namespace, name)
            if current is None:
                self.cluster.create_custom_object(
                    PROMETHEUS_RULE_GROUP, PROMETHEUS_RULE_VERSION, PROMETHEUS_RULE_PLURAL, namespace, desired)
                logger.info(f"Created alert rule {key}")
                return "created"
            if current.get("spec") == desired["spec"]:
                return "compliant"

            updated = copy.deepcopy(current)
            updated["spec"] = desired["spec"]
            self.cluster.replace_custom_object(
                PROMETHEUS_RULE_GROUP, PROMETHEUS_RULE_VERSION, PROMETHEUS_RULE_PLURAL, namespace, name, updated)
            logger.info(f"Updated alert rule {key}")
            return "reconciled"

        try:
            result["status"] = retry_on_conflict(update)
        except ApiException as e:
            logger.error(f"Error reconciling alert rule {key}: {e}")
            result["status"] = "error"
            result["message"] = f"failed to reconcile PrometheusRule {key}: {e.reason}"
        return result

    def _resource_blocks(self, obj: Dict[str, Any], binding: ComponentBinding) -> List[Optional[Dict[str, Any]]]:
        if binding.resources_path is not None:
            return [get_path(obj, binding.resources_path)]
        containers = get_path(obj, ("spec", "template", "spec", "containers")) or []
        return [container.get("resources") for container in containers]

    def _apply(self, obj: Dict[str, Any], resource: GovernedResource, quota: QuotaConfig) -> None:
        """Overwrite replicas and resource requirements with the quota values."""
        for binding in resource.bindings:
            config = quota.get_component(binding.component)
            if config is None:
                logger.warning(f"Quota {quota.name} has no configuration for {binding.component}")
                continue

            set_path(obj, binding.replicas_path, config.replicas)

            if binding.resources_path is not None:
                requirements = get_path(obj, binding.resources_path)
                if not isinstance(requirements, dict):
                    requirements = {}
                set_path(obj, binding.resources_path, _merge_requirements(requirements, config))
            else:
                for container in get_path(obj, ("spec", "template", "spec", "containers")) or []:
                    container["resources"] = _merge_requirements(container.get("resources") or {}, config)

    def _read(self, resource: GovernedResource, namespace: str) -> Optional[Dict[str, Any]]:
        if resource.kind == DEPLOYMENT_KIND:
            return self.cluster.get_deployment(namespace, resource.name)
        return self.cluster.get_custom_object(
            resource.group, resource.version, resource.plural, namespace, resource.name)

    def _write(self, resource: GovernedResource, namespace: str, body: Dict[str, Any]) -> None:
        if resource.kind == DEPLOYMENT_KIND:
            self.cluster.replace_deployment(namespace, resource.name, body)
        else:
            self.cluster.replace_custom_object(
                resource.group, resource.version, resource.plural, namespace, resource.name, body)


def _merge_requirements(requirements: Dict[str, Any], config: ComponentConfig) -> Dict[str, Any]:
    merged = copy.deepcopy(requirements)
    for section, values in config.resources().items():
        block = merged.get(section)
        if not isinstance(block, dict):
            block = {}
        block.update(values)
        merged[section] = block
    return merged


def build_alert_rule(name: str, namespace: str, level: int, period: str, threshold: int,
                     quota: QuotaConfig) -> Dict[str, Any]:
    """PrometheusRule firing when API usage over ``period`` exceeds ``threshold``."""
    rate_limit = quota.rate_limit
    return {
        "apiVersion": f"{PROMETHEUS_RULE_GROUP}/{PROMETHEUS_RULE_VERSION}",
        "kind": "PrometheusRule",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": {"monitoring-key": "middleware"},
        },
        "spec": {
            "groups": [{
                "name": "api-usage.rules",
                "rules": [{
                    "alert": f"RHOAMApiUsageLevel{level}ThresholdExceeded",
                    "annotations": {
                        "message": (
                            f"3Scale API usage exceeded {threshold} requests during the last {period} "
                            f"(quota {quota.name}, {rate_limit.requests_per_unit} requests per {rate_limit.unit})"
                        ),
                    },
                    "expr": f"sum(increase({ALERT_RULE_METRIC}[{period}])) > {threshold}",
                    "labels": {"severity": "warning"},
                }],
            }],
        },
    }

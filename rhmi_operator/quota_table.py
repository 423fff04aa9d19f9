"""Quota tiers: per-component resource requirements and rate limits."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import QuotaNotFoundError
from .stages import PRODUCT_3SCALE, PRODUCT_GRAFANA, PRODUCT_MARIN3R, PRODUCT_RHSSO_USER

logger = logging.getLogger(__name__)

# Component names
RATE_LIMIT_NAME = "ratelimit"
BACKEND_LISTENER_NAME = "backend_listener"
BACKEND_WORKER_NAME = "backend_worker"
APICAST_PRODUCTION_NAME = "apicast_production"
APICAST_STAGING_NAME = "apicast_staging"
KEYCLOAK_NAME = "rhssouser"
GRAFANA_NAME = "grafana"

# Components governed by the quota, per product
GOVERNED_COMPONENTS: Dict[str, List[str]] = {
    PRODUCT_3SCALE: [
        BACKEND_LISTENER_NAME,
        BACKEND_WORKER_NAME,
        APICAST_PRODUCTION_NAME,
        APICAST_STAGING_NAME,
    ],
    PRODUCT_RHSSO_USER: [KEYCLOAK_NAME],
    PRODUCT_MARIN3R: [RATE_LIMIT_NAME],
    PRODUCT_GRAFANA: [GRAFANA_NAME],
}


@dataclass(frozen=True)
class ComponentConfig:
    """Replicas and resource requirements for one component."""
    replicas: int = 0
    cpu_request: str = ""
    cpu_limit: str = ""
    memory_request: str = ""
    memory_limit: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComponentConfig":
        resources = data.get("resources") or {}
        requests = resources.get("requests") or {}
        limits = resources.get("limits") or {}
        return cls(
            replicas=int(data.get("replicas", 0)),
            cpu_request=_quantity(requests.get("cpu")),
            cpu_limit=_quantity(limits.get("cpu")),
            memory_request=_quantity(requests.get("memory")),
            memory_limit=_quantity(limits.get("memory")),
        )

    def resources(self) -> Dict[str, Dict[str, str]]:
        """Kubernetes ResourceRequirements dict, omitting unset values."""
        requests = {}
        limits = {}
        if self.cpu_request:
            requests["cpu"] = self.cpu_request
        if self.memory_request:
            requests["memory"] = self.memory_request
        if self.cpu_limit:
            limits["cpu"] = self.cpu_limit
        if self.memory_limit:
            limits["memory"] = self.memory_limit
        return {"requests": requests, "limits": limits}


@dataclass(frozen=True)
class RateLimitConfig:
    unit: str = "minute"
    requests_per_unit: int = 0


@dataclass(frozen=True)
class QuotaConfig:
    """One quota tier."""
    name: str
    param: str
    rate_limit: RateLimitConfig
    components: Dict[str, ComponentConfig] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuotaConfig":
        rate_limit = data.get("rate-limiting") or {}
        return cls(
            name=data.get("name", ""),
            param=str(data.get("param", "")),
            rate_limit=RateLimitConfig(
                unit=rate_limit.get("unit", "minute"),
                requests_per_unit=int(rate_limit.get("requests_per_unit", 0)),
            ),
            components={
                name: ComponentConfig.from_dict(value or {})
                for name, value in (data.get("resources") or {}).items()
            },
        )

    def get_component(self, component: str) -> Optional[ComponentConfig]:
        return self.components.get(component)


class QuotaTable:
    """Lookup of quota tiers by their parameter value."""

    def __init__(self, quotas: List[QuotaConfig]):
        self._quotas = {quota.param: quota for quota in quotas}

    @classmethod
    def from_json(cls, raw: str) -> "QuotaTable":
        """
        Parse the JSON list stored in the quota config map.

        Raises:
            ValueError: the data is not a JSON list of quota objects
        """
        entries = json.loads(raw)
        if not isinstance(entries, list):
            raise ValueError("quota config must be a JSON list")
        return cls([QuotaConfig.from_dict(entry) for entry in entries])

    def lookup(self, param: str) -> QuotaConfig:
        """
        Return the quota matching a parameter value.

        Raises:
            QuotaNotFoundError: no quota has this parameter
        """
        quota = self._quotas.get(str(param))
        if quota is None or not quota.name:
            raise QuotaNotFoundError(param)
        return quota

    def params(self) -> List[str]:
        return list(self._quotas)


def _quantity(value) -> str:
    if value is None:
        return ""
    return str(value)


def _component(replicas, cpu_request, memory_request, cpu_limit, memory_limit):
    return {
        "replicas": replicas,
        "resources": {
            "requests": {"cpu": cpu_request, "memory": memory_request},
            "limits": {"cpu": cpu_limit, "memory": memory_limit},
        },
    }


def _tier(name, param, requests_per_minute, scale):
    """Build a default tier; ``scale`` multiplies the replica counts of the hot path."""
    return {
        "name": name,
        "param": param,
        "rate-limiting": {"unit": "minute", "requests_per_unit": requests_per_minute, "alert_limits": []},
        "resources": {
            RATE_LIMIT_NAME: _component(max(2, scale), "150m", "96Mi", "350m", "192Mi"),
            BACKEND_LISTENER_NAME: _component(max(2, scale), "250m", "450Mi", "500m", "500Mi"),
            BACKEND_WORKER_NAME: _component(max(2, scale), "150m", "100Mi", "300m", "200Mi"),
            APICAST_PRODUCTION_NAME: _component(max(2, scale), "250m", "250Mi", "500m", "500Mi"),
            APICAST_STAGING_NAME: _component(2, "50m", "64Mi", "100m", "128Mi"),
            KEYCLOAK_NAME: _component(max(2, scale // 2), "750m", "1500Mi", "1500m", "1500Mi"),
            GRAFANA_NAME: _component(1, "250m", "256Mi", "500m", "512Mi"),
        },
    }


# Bundled tiers, seeded into the quota config map when it does not exist.
# The parameter counts units of 100K requests per day.
DEFAULT_QUOTA_CONFIGS = [
    _tier("100K", "1", 69, 1),
    _tier("1 Million", "10", 694, 2),
    _tier("5 Million", "50", 3472, 3),
    _tier("10 Million", "100", 6944, 3),
    _tier("20 Million", "200", 13889, 4),
    _tier("50 Million", "500", 34722, 6),
    _tier("100 Million", "1000", 69444, 8),
]


def default_quota_config_json() -> str:
    return json.dumps(DEFAULT_QUOTA_CONFIGS)

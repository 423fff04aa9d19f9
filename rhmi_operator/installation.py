"""Installation custom resource model: phases, stages and product status."""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from .config import DEFAULT_BACKUP_APPLY_ON, DEFAULT_MAINTENANCE_APPLY_FROM

logger = logging.getLogger(__name__)

COMPLETE_STAGE = "complete"


class Phase(str, Enum):
    """Phase of a stage or product."""
    NOT_STARTED = ""
    IN_PROGRESS = "in progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Phase":
        """Parse a phase string, treating unknown values as in progress."""
        if not value:
            return cls.NOT_STARTED
        try:
            return cls(value)
        except ValueError:
            logger.debug(f"Unknown phase '{value}', treating as in progress")
            return cls.IN_PROGRESS


@dataclass
class ProductStatus:
    """Status of a single product within a stage."""
    name: str
    phase: Phase = Phase.NOT_STARTED
    version: str = ""
    operator_version: str = ""
    host: str = ""
    message: str = ""

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "ProductStatus":
        return cls(
            name=data.get("name", name),
            phase=Phase.parse(data.get("phase")),
            version=data.get("version", ""),
            operator_version=data.get("operator", ""),
            host=data.get("host", ""),
            message=data.get("message", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "phase": self.phase.value,
            "version": self.version,
            "operator": self.operator_version,
            "host": self.host,
            "message": self.message,
        }


def derive_stage_phase(phases: Iterable[Phase]) -> Phase:
    """
    Derive a stage phase from its products' phases.

    Completed iff every product is Completed (vacuously so when there are
    none). Any Failed product fails the stage.
    """
    phases = list(phases)
    if all(phase == Phase.COMPLETED for phase in phases):
        return Phase.COMPLETED
    if any(phase == Phase.FAILED for phase in phases):
        return Phase.FAILED
    if all(phase == Phase.NOT_STARTED for phase in phases):
        return Phase.NOT_STARTED
    return Phase.IN_PROGRESS


@dataclass
class StageStatus:
    """Status of an installation stage."""
    name: str
    phase: Phase = Phase.NOT_STARTED
    products: Dict[str, ProductStatus] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "StageStatus":
        products = {
            product_name: ProductStatus.from_dict(product_name, product_data or {})
            for product_name, product_data in (data.get("products") or {}).items()
        }
        return cls(
            name=data.get("name", name),
            phase=Phase.parse(data.get("phase")),
            products=products,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "phase": self.phase.value,
            "products": {name: product.to_dict() for name, product in self.products.items()},
        }

    def recompute_phase(self) -> Phase:
        self.phase = derive_stage_phase(product.phase for product in self.products.values())
        return self.phase


@dataclass
class InstallationStatus:
    """Observed state of the installation."""
    stages: Dict[str, StageStatus] = field(default_factory=dict)
    stage: str = ""
    last_error: str = ""
    version: str = ""
    to_version: str = ""
    quota: str = ""
    to_quota: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "InstallationStatus":
        data = data or {}
        stages = {
            name: StageStatus.from_dict(name, stage_data or {})
            for name, stage_data in (data.get("stages") or {}).items()
        }
        return cls(
            stages=stages,
            stage=data.get("stage", ""),
            last_error=data.get("lastError", ""),
            version=data.get("version", ""),
            to_version=data.get("toVersion", ""),
            quota=data.get("quota", ""),
            to_quota=data.get("toQuota", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stages": {name: stage.to_dict() for name, stage in self.stages.items()},
            "stage": self.stage,
            "lastError": self.last_error,
            "version": self.version,
            "toVersion": self.to_version,
            "quota": self.quota,
            "toQuota": self.to_quota,
        }


@dataclass
class Installation:
    """Parsed installation custom resource."""
    name: str
    namespace: str
    type: str
    namespace_prefix: str = ""
    routing_subdomain: str = ""
    self_signed_certs: bool = False
    use_cluster_storage: bool = False
    priority_class_name: str = ""
    maintenance_apply_from: str = DEFAULT_MAINTENANCE_APPLY_FROM
    backup_apply_on: str = DEFAULT_BACKUP_APPLY_ON
    resource_version: str = ""
    status: InstallationStatus = field(default_factory=InstallationStatus)

    @classmethod
    def from_crd(cls, crd_object: Dict[str, Any]) -> "Installation":
        """Create an Installation from the CRD object."""
        metadata = crd_object.get("metadata", {})
        spec = crd_object.get("spec", {})

        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            type=spec.get("type", ""),
            namespace_prefix=spec.get("namespacePrefix", ""),
            routing_subdomain=spec.get("routingSubdomain", ""),
            self_signed_certs=bool(spec.get("selfSignedCerts", False)),
            use_cluster_storage=_parse_bool(spec.get("useClusterStorage", False)),
            priority_class_name=spec.get("priorityClassName", ""),
            maintenance_apply_from=(spec.get("maintenance") or {}).get("applyFrom") or DEFAULT_MAINTENANCE_APPLY_FROM,
            backup_apply_on=(spec.get("backup") or {}).get("applyOn") or DEFAULT_BACKUP_APPLY_ON,
            resource_version=metadata.get("resourceVersion", ""),
            status=InstallationStatus.from_dict(crd_object.get("status")),
        )

    def product_namespace(self, suffix: str) -> str:
        return f"{self.namespace_prefix}{suffix}"

    def is_installed(self) -> bool:
        """Installed once a version has been written to the status."""
        return self.status.version != ""

    def get_product_status(self, product: str) -> Optional[ProductStatus]:
        for stage in self.status.stages.values():
            if product in stage.products:
                return stage.products[product]
        return None

    def snapshot_status(self) -> Dict[str, Any]:
        return copy.deepcopy(self.status.to_dict())


def _parse_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)

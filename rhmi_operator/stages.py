"""Ordered install stages for each installation type."""

from dataclasses import dataclass
from typing import Dict, List, Tuple

from .config import (
    INSTALLATION_TYPE_MANAGED,
    INSTALLATION_TYPE_MANAGED_API,
    INSTALLATION_TYPE_MULTITENANT_MANAGED_API,
)
from .errors import UnknownInstallationTypeError

# Stage names
BOOTSTRAP_STAGE = "bootstrap"
INSTALL_STAGE = "installation"
CLOUD_RESOURCES_STAGE = "cloud-resources"
MONITORING_STAGE = "monitoring"
AUTHENTICATION_STAGE = "authentication"
PRODUCTS_STAGE = "products"
SOLUTION_EXPLORER_STAGE = "solution-explorer"

# Product names
PRODUCT_RHSSO = "rhsso"
PRODUCT_RHSSO_USER = "rhssouser"
PRODUCT_3SCALE = "3scale"
PRODUCT_CLOUD_RESOURCES = "cloud-resources"
PRODUCT_OBSERVABILITY = "observability"
PRODUCT_MONITORING = "middleware-monitoring"
PRODUCT_MARIN3R = "marin3r"
PRODUCT_GRAFANA = "grafana"
PRODUCT_AMQ_ONLINE = "amqonline"
PRODUCT_CODEREADY = "codeready-workspaces"
PRODUCT_FUSE = "fuse"
PRODUCT_FUSE_ON_OPENSHIFT = "fuse-on-openshift"
PRODUCT_UPS = "ups"
PRODUCT_APICURITO = "apicurito"
PRODUCT_DATASYNC = "datasync"
PRODUCT_SOLUTION_EXPLORER = "solution-explorer"

# Products whose health decides whether the installation is degraded:
# identity, cloud resources, monitoring and API management.
CORE_PRODUCTS = frozenset({
    PRODUCT_RHSSO,
    PRODUCT_RHSSO_USER,
    PRODUCT_CLOUD_RESOURCES,
    PRODUCT_OBSERVABILITY,
    PRODUCT_MONITORING,
    PRODUCT_3SCALE,
})

# Namespace suffixes (appended to spec.namespacePrefix) where they differ
# from the product name.
PRODUCT_NAMESPACE_SUFFIXES: Dict[str, str] = {
    PRODUCT_RHSSO_USER: "user-sso",
    PRODUCT_CLOUD_RESOURCES: "cloud-resources-operator",
    PRODUCT_OBSERVABILITY: "observability",
    PRODUCT_MONITORING: "middleware-monitoring-operator",
    PRODUCT_GRAFANA: "customer-monitoring",
}


def product_namespace_suffix(product: str) -> str:
    return PRODUCT_NAMESPACE_SUFFIXES.get(product, product)


@dataclass(frozen=True)
class Stage:
    """A named group of products that must all complete before the next stage."""
    name: str
    products: Tuple[str, ...] = ()


_STAGES: Dict[str, List[Stage]] = {
    INSTALLATION_TYPE_MANAGED: [
        Stage(BOOTSTRAP_STAGE),
        Stage(CLOUD_RESOURCES_STAGE, (PRODUCT_CLOUD_RESOURCES,)),
        Stage(MONITORING_STAGE, (PRODUCT_MONITORING,)),
        Stage(AUTHENTICATION_STAGE, (PRODUCT_RHSSO,)),
        Stage(PRODUCTS_STAGE, (
            PRODUCT_3SCALE,
            PRODUCT_AMQ_ONLINE,
            PRODUCT_CODEREADY,
            PRODUCT_FUSE,
            PRODUCT_FUSE_ON_OPENSHIFT,
            PRODUCT_UPS,
            PRODUCT_APICURITO,
            PRODUCT_RHSSO_USER,
            PRODUCT_DATASYNC,
        )),
        Stage(SOLUTION_EXPLORER_STAGE, (PRODUCT_SOLUTION_EXPLORER,)),
    ],
    INSTALLATION_TYPE_MANAGED_API: [
        Stage(BOOTSTRAP_STAGE),
        Stage(INSTALL_STAGE, (
            PRODUCT_CLOUD_RESOURCES,
            PRODUCT_OBSERVABILITY,
            PRODUCT_RHSSO,
            PRODUCT_3SCALE,
            PRODUCT_RHSSO_USER,
            PRODUCT_MARIN3R,
            PRODUCT_GRAFANA,
        )),
    ],
    INSTALLATION_TYPE_MULTITENANT_MANAGED_API: [
        Stage(BOOTSTRAP_STAGE),
        Stage(INSTALL_STAGE, (
            PRODUCT_CLOUD_RESOURCES,
            PRODUCT_OBSERVABILITY,
            PRODUCT_RHSSO,
            PRODUCT_3SCALE,
            PRODUCT_MARIN3R,
            PRODUCT_GRAFANA,
        )),
    ],
}


def get_install_stages(installation_type: str) -> List[Stage]:
    """
    Return the ordered install stages for an installation type.

    The install does not move to the next stage until every product in the
    current one has completed.
    """
    try:
        return list(_STAGES[installation_type])
    except KeyError:
        raise UnknownInstallationTypeError(installation_type) from None


def products_for_type(installation_type: str) -> List[str]:
    return [product for stage in get_install_stages(installation_type) for product in stage.products]

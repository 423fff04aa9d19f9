"""Product reconciler contract and registry."""

import abc
import logging
from typing import Dict, Iterable, Optional

from kubernetes.client.rest import ApiException

from .crd_client import ClusterClient
from .installation import Installation, Phase, ProductStatus
from .stages import product_namespace_suffix

logger = logging.getLogger(__name__)


class ProductReconciler(abc.ABC):
    """
    Drives one product towards Completed.

    ``reconcile`` is called on every pass while the product's stage is
    active, so it must be idempotent and must not block waiting for the
    product: return Phase.IN_PROGRESS and expect to be called again.
    Reserve Phase.FAILED for states that need operator intervention.
    Raised exceptions are treated as transient errors.

    The reconciler may update ``product_status.version``, ``host`` and
    ``message`` in place.
    """

    @abc.abstractmethod
    def reconcile(self, installation: Installation, product_status: ProductStatus,
                  cluster: ClusterClient) -> Phase:
        raise NotImplementedError


class ProductRegistry:
    """Maps product names to their reconcilers."""

    def __init__(self, reconcilers: Optional[Dict[str, ProductReconciler]] = None):
        self._reconcilers: Dict[str, ProductReconciler] = dict(reconcilers or {})

    def register(self, product: str, reconciler: ProductReconciler) -> None:
        self._reconcilers[product] = reconciler

    def get(self, product: str) -> Optional[ProductReconciler]:
        return self._reconcilers.get(product)


class NamespaceProductReconciler(ProductReconciler):
    """Ensures the product namespace exists and reports Completed once it does."""

    def __init__(self, product: str, version: str = ""):
        self.product = product
        self.version = version

    def reconcile(self, installation: Installation, product_status: ProductStatus,
                  cluster: ClusterClient) -> Phase:
        namespace = installation.product_namespace(product_namespace_suffix(self.product))

        try:
            if not cluster.namespace_exists(namespace):
                cluster.create_namespace(namespace, labels={"integreatly": "true"})
                product_status.message = f"waiting for namespace {namespace} to become active"
                return Phase.IN_PROGRESS
        except ApiException as e:
            logger.error(f"Error reconciling namespace {namespace} for {self.product}: {e}")
            product_status.message = f"failed to reconcile namespace {namespace}: {e.reason}"
            return Phase.IN_PROGRESS

        product_status.version = self.version
        product_status.message = ""
        return Phase.COMPLETED


def default_registry(products: Iterable[str]) -> ProductRegistry:
    """Registry with a namespace reconciler for every product."""
    return ProductRegistry({product: NamespaceProductReconciler(product) for product in products})

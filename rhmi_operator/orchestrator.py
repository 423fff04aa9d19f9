"""Stage-ordered installation of the platform products."""

import logging
from typing import List, Tuple

from kubernetes.client.rest import ApiException

from .config import OPERATOR_VERSION
from .crd_client import ClusterClient
from .installation import COMPLETE_STAGE, Installation, Phase, ProductStatus, StageStatus
from .products import ProductRegistry
from .stages import Stage, get_install_stages, product_namespace_suffix

logger = logging.getLogger(__name__)


class StageOrchestrator:
    """
    Walks the install stages of an installation in order.

    Completed stages are skipped. The first stage that is not Completed has
    every product reconciled; when that completes the walk falls through to
    the next stage in the same pass, otherwise it stops there.
    """

    def __init__(self, cluster: ClusterClient, registry: ProductRegistry):
        self.cluster = cluster
        self.registry = registry

    def run_pass(self, installation: Installation) -> Tuple[Phase, List[str]]:
        """
        Run one installation pass.

        Args:
            installation: The installation; its status is updated in place

        Returns:
            Tuple of (overall phase, list of error messages)

        Raises:
            UnknownInstallationTypeError: the type has no stage definition
        """
        stages = get_install_stages(installation.type)
        status = installation.status
        errors: List[str] = []

        if not status.version and not status.to_version:
            status.to_version = OPERATOR_VERSION
            logger.info(f"Setting toVersion {OPERATOR_VERSION} on initial install")
        elif status.version and status.version != OPERATOR_VERSION and not status.to_version:
            status.to_version = OPERATOR_VERSION
            logger.info(f"Upgrading installation from {status.version} to {OPERATOR_VERSION}")

        self.detect_drift(installation)

        overall = Phase.COMPLETED
        for stage in stages:
            stage_status = self._sync_stage(installation, stage)
            if stage_status.phase == Phase.COMPLETED:
                continue

            status.stage = stage.name
            errors.extend(self._process_stage(installation, stage_status))

            # don't move to the next stage until the current one is complete
            if stage_status.phase != Phase.COMPLETED:
                overall = Phase.FAILED if stage_status.phase == Phase.FAILED else Phase.IN_PROGRESS
                logger.info(f"Stage {stage.name} is {stage_status.phase.value or 'not started'}")
                break

        if overall == Phase.COMPLETED:
            status.stage = COMPLETE_STAGE
            if status.to_version:
                status.version = status.to_version
                status.to_version = ""
                logger.info(f"Installation of version {status.version} completed successfully")

        return overall, errors

    def detect_drift(self, installation: Installation) -> List[str]:
        """
        Reopen Completed products whose namespace has disappeared.

        The product goes back to InProgress so its stage is walked again and
        its reconciler can recreate what was removed.

        Returns:
            Names of the reopened products
        """
        reopened = []
        for stage_status in installation.status.stages.values():
            for name, product_status in stage_status.products.items():
                if product_status.phase != Phase.COMPLETED:
                    continue

                namespace = installation.product_namespace(product_namespace_suffix(name))
                try:
                    exists = self.cluster.namespace_exists(namespace)
                except ApiException as e:
                    logger.warning(f"Could not check namespace {namespace} for {name}: {e.reason}")
                    continue

                if not exists:
                    logger.warning(f"Namespace {namespace} of completed product {name} is missing")
                    product_status.phase = Phase.IN_PROGRESS
                    product_status.message = f"namespace {namespace} is missing, waiting for it to be recreated"
                    reopened.append(name)

            stage_status.recompute_phase()
        return reopened

    def _sync_stage(self, installation: Installation, stage: Stage) -> StageStatus:
        """Get the stage status, creating it on first entry and aligning its products."""
        stages = installation.status.stages
        existing = stages.get(stage.name)
        previous = existing.products if existing else {}

        stage_status = StageStatus(
            name=stage.name,
            products={
                product: previous.get(product) or ProductStatus(name=product)
                for product in stage.products
            },
        )
        stage_status.recompute_phase()
        stages[stage.name] = stage_status
        return stage_status

    def _process_stage(self, installation: Installation, stage_status: StageStatus) -> List[str]:
        errors = []

        for name, product_status in stage_status.products.items():
            reconciler = self.registry.get(name)
            if reconciler is None:
                message = f"failed to build a reconciler for {name}"
                logger.error(message)
                product_status.phase = Phase.FAILED
                product_status.message = message
                errors.append(message)
                continue

            try:
                phase = reconciler.reconcile(installation, product_status, self.cluster)
            except Exception as e:
                logger.error(f"Error reconciling product {name}: {e}")
                product_status.phase = Phase.IN_PROGRESS
                product_status.message = f"failed installation of {name}: {e}"
                errors.append(product_status.message)
                continue

            product_status.phase = phase
            if phase == Phase.COMPLETED:
                product_status.message = ""
            elif phase == Phase.FAILED:
                if not product_status.message:
                    product_status.message = f"{name} reported a failure that requires intervention"
                errors.append(f"{name} failed: {product_status.message}")
            elif not product_status.message:
                product_status.message = f"waiting for {name} to complete"

            logger.debug(f"Product {name} is {phase.value or 'not started'}")

        stage_status.recompute_phase()
        return errors

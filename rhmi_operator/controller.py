"""Main controller logic for the RHMI installation operator."""

import copy
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from kubernetes.client.rest import ApiException

from .config import INSTALLATION_NAME, RECONCILE_INTERVAL_SECONDS, WATCH_TIMEOUT_SECONDS
from .crd_client import ClusterClient
from .health import HealthAggregator
from .installation import Installation, InstallationStatus
from .orchestrator import StageOrchestrator
from .products import ProductRegistry, default_registry
from .quota import QuotaEngine
from .stages import products_for_type
from .utils import retry_on_conflict
from .windows import StrategyOverrideReconciler

logger = logging.getLogger(__name__)


class InstallationController:
    """
    Watches the installation custom resource and runs reconcile passes.

    A pass walks the install stages, applies the quota, writes the
    cloud resource strategy windows, reports health and finally writes the
    installation status. Passes triggered by the watch and by the periodic
    timer never run concurrently.
    """

    def __init__(self, namespace: str, name: str = INSTALLATION_NAME,
                 cluster: Optional[ClusterClient] = None,
                 registry: Optional[ProductRegistry] = None,
                 interval: int = RECONCILE_INTERVAL_SECONDS):
        """
        Initialize the controller.

        Args:
            namespace: Namespace holding the installation
            name: Name of the installation
            cluster: Cluster client (created from the loaded kube config if None)
            registry: Product reconcilers (namespace reconcilers for the
                installation type if None)
            interval: Seconds between periodic passes
        """
        self.namespace = namespace
        self.name = name
        self.interval = interval
        self.cluster = cluster or ClusterClient()
        self.registry = registry

        self.quota_engine = QuotaEngine(self.cluster)
        self.strategy_reconciler = StrategyOverrideReconciler(self.cluster)
        self.health = HealthAggregator(self.cluster)

        self._lock = threading.Lock()
        self._stop_event = threading.Event()

    def reconcile(self) -> Optional[Installation]:
        """
        Run one pass for the installation.

        Returns:
            The installation after the pass, or None if it doesn't exist
        """
        with self._lock:
            try:
                crd_object = self.cluster.get_installation(self.name, self.namespace)
            except ApiException as e:
                logger.error(f"Error reading installation {self.namespace}/{self.name}: {e}")
                return None

            if crd_object is None:
                logger.info(f"Installation {self.namespace}/{self.name} not found, nothing to do")
                return None

            return self.reconcile_installation(Installation.from_crd(crd_object))

    def reconcile_installation(self, installation: Installation) -> Installation:
        """Run the steps of a pass against a parsed installation."""
        snapshot = installation.snapshot_status()
        errors: List[str] = []
        healthy = True

        def install() -> List[str]:
            registry = self.registry or default_registry(products_for_type(installation.type))
            phase, stage_errors = StageOrchestrator(self.cluster, registry).run_pass(installation)
            logger.info(f"Installation {installation.name} is at stage '{installation.status.stage}' ({phase.value or 'not started'})")
            return stage_errors

        steps = (
            ("installation", install),
            ("quota", lambda: self.quota_engine.reconcile(installation)),
            ("strategy override", lambda: self.strategy_reconciler.reconcile(installation)),
        )
        for step_name, step in steps:
            step_errors, completed = self._run_step(step_name, step)
            errors.extend(step_errors)
            healthy = healthy and completed

        installation.status.last_error = "; ".join(errors)

        health_errors, _ = self._run_step("health", lambda: self.health.report(installation, healthy))
        if health_errors:
            errors.extend(health_errors)
            installation.status.last_error = "; ".join(errors)

        if errors:
            logger.warning(f"Pass completed with errors: {installation.status.last_error}")

        self.write_status(installation, snapshot)
        return installation

    def _run_step(self, step_name: str, step: Callable[[], List[str]]) -> Tuple[List[str], bool]:
        """Run a step, returning its errors and whether it finished without raising."""
        try:
            return step(), True
        except Exception as e:
            logger.error(f"Unexpected error in {step_name} step: {e}")
            return [f"{step_name} step failed: {e}"], False

    def write_status(self, installation: Installation, snapshot: Dict[str, Any]) -> bool:
        """
        Write the installation status if it differs from the snapshot.

        Conflicts re-read the installation and re-apply the computed status.

        Returns:
            True if the status was written
        """
        desired = installation.status.to_dict()
        if desired == snapshot:
            logger.debug("Installation status unchanged, skipping write")
            return False

        def update() -> bool:
            current = self.cluster.get_installation(installation.name, installation.namespace)
            if current is None:
                return False
            if InstallationStatus.from_dict(current.get("status")).to_dict() == desired:
                return False

            body = copy.deepcopy(current)
            body["status"] = desired
            self.cluster.replace_installation_status(body)
            return True

        try:
            written = retry_on_conflict(update)
        except ApiException as e:
            logger.error(f"Error writing status of installation {installation.namespace}/{installation.name}: {e}")
            return False

        if written:
            logger.info(f"Updated status of installation {installation.namespace}/{installation.name}")
        return written

    def handle_installation_event(self, event_type: str, crd_object: dict) -> None:
        """
        Handle an installation watch event.

        Args:
            event_type: ADDED, MODIFIED, or DELETED
            crd_object: The installation object from the event
        """
        metadata = crd_object.get("metadata", {})
        name = metadata.get("name", "")
        namespace = metadata.get("namespace", "")

        if name != self.name or (self.namespace and namespace != self.namespace):
            return

        if event_type in ("ADDED", "MODIFIED"):
            logger.debug(f"Installation {event_type}: {namespace}/{name}")
            self.reconcile()
        elif event_type == "DELETED":
            logger.info(f"Installation DELETED: {namespace}/{name}")

    def watch_installations(self) -> None:
        """Watch for installation events in a loop."""
        logger.info("Starting installation watcher...")

        while not self._stop_event.is_set():
            try:
                for event in self.cluster.watch_installations(
                    namespace=self.namespace,
                    timeout=WATCH_TIMEOUT_SECONDS
                ):
                    if self._stop_event.is_set():
                        break

                    self.handle_installation_event(event["type"], event["object"])

            except ApiException as e:
                logger.error(f"Installation watch error: {e}")
                self._stop_event.wait(5)
            except Exception as e:
                logger.error(f"Unexpected error in installation watcher: {e}")
                self._stop_event.wait(5)

    def periodic_reconcile(self) -> None:
        """Periodically reconcile the installation."""
        logger.info(f"Starting periodic reconciler (interval: {self.interval}s)")

        while not self._stop_event.wait(self.interval):
            logger.debug("Running periodic reconciliation...")
            try:
                self.reconcile()
            except Exception as e:
                logger.error(f"Unexpected error in periodic reconciliation: {e}")

    def run(self) -> None:
        """Run the controller."""
        logger.info("=" * 60)
        logger.info("Starting RHMI installation operator")
        logger.info("=" * 60)
        logger.info(f"Installation: {self.namespace}/{self.name}")

        self.reconcile()

        watch_thread = threading.Thread(
            target=self.watch_installations,
            name="installation-watcher",
            daemon=True
        )

        reconcile_thread = threading.Thread(
            target=self.periodic_reconcile,
            name="periodic-reconciler",
            daemon=True
        )

        watch_thread.start()
        reconcile_thread.start()

        logger.info("Controller is running. Press Ctrl+C to stop.")

        # Keep main thread alive
        try:
            while not self._stop_event.is_set():
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Shutdown requested...")
            self._stop_event.set()

    def stop(self) -> None:
        """Stop the controller."""
        logger.info("Stopping controller...")
        self._stop_event.set()

#!/usr/bin/env python3
"""
RHMI Installation Operator - Entry Point

Watches the installation custom resource and drives the platform products
through their install stages, keeping quota, maintenance windows and
health reporting in step with it.

Usage:
    python run.py [--namespace NAMESPACE] [--name NAME] [--in-cluster]
"""

import argparse
import logging
import sys

from kubernetes import config

from rhmi_operator.config import INSTALLATION_NAME, WATCH_NAMESPACE
from rhmi_operator.controller import InstallationController

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="RHMI Installation Operator - Install and maintain the managed platform products"
    )
    parser.add_argument(
        "--namespace", "-n",
        default=WATCH_NAMESPACE,
        help="Namespace holding the installation (default: $WATCH_NAMESPACE)"
    )
    parser.add_argument(
        "--name",
        default=INSTALLATION_NAME,
        help=f"Name of the installation (default: {INSTALLATION_NAME})"
    )
    parser.add_argument(
        "--in-cluster",
        action="store_true",
        help="Use in-cluster config (for running inside Kubernetes)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose/debug logging"
    )

    args = parser.parse_args()

    # Set log level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not args.namespace:
        logger.error("No namespace given, use --namespace or set WATCH_NAMESPACE")
        sys.exit(1)

    # Load Kubernetes configuration
    try:
        if args.in_cluster:
            config.load_incluster_config()
            logger.info("Loaded in-cluster configuration")
        else:
            config.load_kube_config()
            logger.info("Loaded kubeconfig from default location")
    except Exception as e:
        logger.error(f"Failed to load Kubernetes config: {e}")
        sys.exit(1)

    # Create and run controller
    controller = InstallationController(
        namespace=args.namespace,
        name=args.name
    )

    try:
        controller.run()
    except KeyboardInterrupt:
        controller.stop()
        logger.info("Controller stopped")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Controller error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

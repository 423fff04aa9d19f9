"""Client for the cluster objects the installation operator reads and writes."""

import base64
import logging
from typing import Any, Dict, Iterator, Optional

from kubernetes import client, watch
from kubernetes.client.rest import ApiException

from .config import CRD_GROUP, CRD_PLURAL, CRD_VERSION

logger = logging.getLogger(__name__)


class ClusterClient:
    """
    Thin wrapper over the Kubernetes APIs.

    Every getter returns the object as a plain dict (camelCase keys, as on
    the wire) or None when it does not exist. Other API errors propagate as
    ApiException so callers can treat them as transient. Updates carry the
    object's resourceVersion, so a concurrent write surfaces as a 409.
    """

    def __init__(self, api_client: Optional[client.ApiClient] = None):
        """Initialize the API clients."""
        self.api_client = api_client or client.ApiClient()
        self.core_v1 = client.CoreV1Api(self.api_client)
        self.apps_v1 = client.AppsV1Api(self.api_client)
        self.custom_api = client.CustomObjectsApi(self.api_client)

    def _to_dict(self, obj) -> Dict[str, Any]:
        return self.api_client.sanitize_for_serialization(obj)

    # Installation CR

    def get_installation(self, name: str, namespace: str) -> Optional[Dict[str, Any]]:
        return self.get_custom_object(CRD_GROUP, CRD_VERSION, CRD_PLURAL, namespace, name)

    def replace_installation_status(self, body: Dict[str, Any]) -> Dict[str, Any]:
        metadata = body["metadata"]
        return self.custom_api.replace_namespaced_custom_object_status(
            group=CRD_GROUP,
            version=CRD_VERSION,
            namespace=metadata["namespace"],
            plural=CRD_PLURAL,
            name=metadata["name"],
            body=body
        )

    def watch_installations(self, namespace: str = "", timeout: int = 300) -> Iterator[Dict[str, Any]]:
        """
        Create a watch stream for installation objects.

        Yields:
            Watch events
        """
        w = watch.Watch()

        if namespace:
            stream = w.stream(
                self.custom_api.list_namespaced_custom_object,
                group=CRD_GROUP,
                version=CRD_VERSION,
                namespace=namespace,
                plural=CRD_PLURAL,
                timeout_seconds=timeout
            )
        else:
            stream = w.stream(
                self.custom_api.list_cluster_custom_object,
                group=CRD_GROUP,
                version=CRD_VERSION,
                plural=CRD_PLURAL,
                timeout_seconds=timeout
            )

        for event in stream:
            yield event

    # Generic custom objects

    def get_custom_object(self, group: str, version: str, plural: str,
                          namespace: str, name: str) -> Optional[Dict[str, Any]]:
        try:
            return self.custom_api.get_namespaced_custom_object(
                group=group,
                version=version,
                namespace=namespace,
                plural=plural,
                name=name
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def create_custom_object(self, group: str, version: str, plural: str,
                             namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self.custom_api.create_namespaced_custom_object(
            group=group,
            version=version,
            namespace=namespace,
            plural=plural,
            body=body
        )

    def replace_custom_object(self, group: str, version: str, plural: str,
                              namespace: str, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self.custom_api.replace_namespaced_custom_object(
            group=group,
            version=version,
            namespace=namespace,
            plural=plural,
            name=name,
            body=body
        )

    def replace_custom_object_status(self, group: str, version: str, plural: str,
                                     namespace: str, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self.custom_api.replace_namespaced_custom_object_status(
            group=group,
            version=version,
            namespace=namespace,
            plural=plural,
            name=name,
            body=body
        )

    # Deployments

    def get_deployment(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        try:
            return self._to_dict(self.apps_v1.read_namespaced_deployment(name=name, namespace=namespace))
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def replace_deployment(self, namespace: str, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._to_dict(self.apps_v1.replace_namespaced_deployment(name=name, namespace=namespace, body=body))

    # Config maps and secrets

    def get_config_map(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        try:
            return self._to_dict(self.core_v1.read_namespaced_config_map(name=name, namespace=namespace))
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def create_config_map(self, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._to_dict(self.core_v1.create_namespaced_config_map(namespace=namespace, body=body))

    def replace_config_map(self, namespace: str, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._to_dict(self.core_v1.replace_namespaced_config_map(name=name, namespace=namespace, body=body))

    def get_secret_value(self, namespace: str, name: str, key: str) -> Optional[str]:
        """Return a decoded secret value, or None when the secret or key is missing."""
        try:
            secret = self.core_v1.read_namespaced_secret(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        data = secret.data or {}
        if key not in data:
            return None
        return base64.b64decode(data[key]).decode("utf-8")

    # Namespaces

    def namespace_exists(self, name: str) -> bool:
        """True if the namespace exists and is not being deleted."""
        try:
            namespace = self.core_v1.read_namespace(name=name)
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        phase = namespace.status.phase if namespace.status else None
        return phase != "Terminating"

    def create_namespace(self, name: str, labels: Optional[Dict[str, str]] = None) -> None:
        body = client.V1Namespace(metadata=client.V1ObjectMeta(name=name, labels=labels or {}))
        try:
            self.core_v1.create_namespace(body=body)
            logger.info(f"Created namespace {name}")
        except ApiException as e:
            if e.status != 409:
                raise

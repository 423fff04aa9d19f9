"""
Shared fixtures for the operator tests.

The FakeCluster stands in for ClusterClient: it keeps objects as plain
dicts, bumps resourceVersion on every write and rejects stale writes with
a 409, like the API server does.
"""

import base64
import copy
from typing import Any, Dict, List, Optional, Tuple

import pytest
from kubernetes.client.rest import ApiException

from rhmi_operator.config import CRD_GROUP, CRD_KIND, CRD_PLURAL, CRD_VERSION
from rhmi_operator.stages import get_install_stages

OPERATOR_NAMESPACE = "redhat-rhoam-operator"
NAMESPACE_PREFIX = "redhat-rhoam-"

DEPLOYMENTS = "deployments"
CONFIG_MAPS = "configmaps"


class FakeCluster:
    """In-memory cluster with optimistic concurrency."""

    def __init__(self):
        self.objects: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self.namespaces = set()
        self.terminating = set()
        self.secrets: Dict[Tuple[str, str], Dict[str, str]] = {}
        self.writes: List[Tuple[str, str, str, str]] = []
        self.conflicts: Dict[str, int] = {}
        self.failures: Dict[str, ApiException] = {}
        self._version = 0

    # Test helpers

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def put(self, kind: str, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Store an object directly, without recording a write."""
        body = copy.deepcopy(body)
        metadata = body.setdefault("metadata", {})
        metadata["namespace"] = namespace
        metadata["resourceVersion"] = self._next_version()
        self.objects[(kind, namespace, metadata["name"])] = body
        return copy.deepcopy(body)

    def get(self, kind: str, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        obj = self.objects.get((kind, namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def writes_for(self, kind: str) -> List[Tuple[str, str, str, str]]:
        return [write for write in self.writes if write[1] == kind]

    def _check_failure(self, kind: str) -> None:
        if kind in self.failures:
            raise self.failures[kind]

    def _create(self, kind: str, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        self._check_failure(kind)
        name = body["metadata"]["name"]
        if (kind, namespace, name) in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        stored = self.put(kind, namespace, body)
        self.writes.append(("create", kind, namespace, name))
        return stored

    def _replace(self, kind: str, namespace: str, name: str, body: Dict[str, Any],
                 status_only: bool = False) -> Dict[str, Any]:
        self._check_failure(kind)
        key = (kind, namespace, name)
        if key not in self.objects:
            raise ApiException(status=404, reason="NotFound")

        if self.conflicts.get(kind):
            # someone else wrote the object in between
            self.conflicts[kind] -= 1
            self.objects[key]["metadata"]["resourceVersion"] = self._next_version()
            raise ApiException(status=409, reason="Conflict")

        current = self.objects[key]
        if body.get("metadata", {}).get("resourceVersion") != current["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")

        if status_only:
            stored = copy.deepcopy(current)
            stored["status"] = copy.deepcopy(body.get("status"))
        else:
            stored = copy.deepcopy(body)
        stored["metadata"]["resourceVersion"] = self._next_version()
        self.objects[key] = stored
        self.writes.append(("replace", kind, namespace, name))
        return copy.deepcopy(stored)

    # ClusterClient interface

    def get_installation(self, name, namespace):
        return self.get_custom_object(CRD_GROUP, CRD_VERSION, CRD_PLURAL, namespace, name)

    def replace_installation_status(self, body):
        metadata = body["metadata"]
        return self._replace(CRD_PLURAL, metadata["namespace"], metadata["name"], body, status_only=True)

    def watch_installations(self, namespace="", timeout=300):
        return iter([])

    def get_custom_object(self, group, version, plural, namespace, name):
        self._check_failure(plural)
        return self.get(plural, namespace, name)

    def create_custom_object(self, group, version, plural, namespace, body):
        return self._create(plural, namespace, body)

    def replace_custom_object(self, group, version, plural, namespace, name, body):
        return self._replace(plural, namespace, name, body)

    def replace_custom_object_status(self, group, version, plural, namespace, name, body):
        return self._replace(plural, namespace, name, body, status_only=True)

    def get_deployment(self, namespace, name):
        self._check_failure(DEPLOYMENTS)
        return self.get(DEPLOYMENTS, namespace, name)

    def replace_deployment(self, namespace, name, body):
        return self._replace(DEPLOYMENTS, namespace, name, body)

    def get_config_map(self, namespace, name):
        return self.get(CONFIG_MAPS, namespace, name)

    def create_config_map(self, namespace, body):
        return self._create(CONFIG_MAPS, namespace, body)

    def replace_config_map(self, namespace, name, body):
        return self._replace(CONFIG_MAPS, namespace, name, body)

    def get_secret_value(self, namespace, name, key):
        data = self.secrets.get((namespace, name))
        if data is None or key not in data:
            return None
        return base64.b64decode(data[key]).decode("utf-8")

    def add_secret(self, namespace, name, values):
        self.secrets[(namespace, name)] = {
            key: base64.b64encode(value.encode("utf-8")).decode("ascii")
            for key, value in values.items()
        }

    def namespace_exists(self, name):
        return name in self.namespaces and name not in self.terminating

    def create_namespace(self, name, labels=None):
        self.namespaces.add(name)
        self.writes.append(("create", "namespaces", "", name))


def build_installation(install_type="managed-api", status=None, spec=None,
                       name="rhoam", namespace=OPERATOR_NAMESPACE):
    """Installation custom resource dict."""
    body = {
        "apiVersion": f"{CRD_GROUP}/{CRD_VERSION}",
        "kind": CRD_KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": dict({"type": install_type, "namespacePrefix": NAMESPACE_PREFIX}, **(spec or {})),
    }
    if status is not None:
        body["status"] = status
    return body


def build_completed_status(install_type="managed-api", version="1.40.0"):
    """Status of an installation where every product has completed."""
    stages = {}
    for stage in get_install_stages(install_type):
        stages[stage.name] = {
            "name": stage.name,
            "phase": "completed",
            "products": {
                product: {"name": product, "phase": "completed", "version": "", "operator": "",
                          "host": "", "message": ""}
                for product in stage.products
            },
        }
    return {
        "stages": stages,
        "stage": "complete",
        "lastError": "",
        "version": version,
        "toVersion": "",
        "quota": "",
        "toQuota": "",
    }


@pytest.fixture
def cluster():
    """Empty in-memory cluster."""
    return FakeCluster()


@pytest.fixture
def make_installation():
    return build_installation


@pytest.fixture
def completed_status():
    return build_completed_status


def _deployment(name, replicas=1, containers=("main",)):
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": name},
        "spec": {
            "replicas": replicas,
            "template": {
                "spec": {
                    "containers": [
                        {"name": container, "image": f"{container}:latest",
                         "resources": {"requests": {"cpu": "10m", "memory": "10Mi",
                                                    "ephemeral-storage": "1Gi"}}}
                        for container in containers
                    ],
                },
            },
        },
    }


def _component_spec(replicas=1):
    return {"replicas": replicas, "resources": {"requests": {"cpu": "10m", "memory": "10Mi"}}}


def seed_governed_resources(cluster: FakeCluster, prefix: str = NAMESPACE_PREFIX) -> None:
    """Governed resources as a fresh install leaves them, before any quota is applied."""
    for suffix in ("3scale", "user-sso", "marin3r", "customer-monitoring", "observability",
                   "rhsso", "cloud-resources-operator"):
        cluster.namespaces.add(prefix + suffix)

    cluster.put("apimanagers", prefix + "3scale", {
        "apiVersion": "apps.3scale.net/v1alpha1",
        "kind": "APIManager",
        "metadata": {"name": "3scale"},
        "spec": {
            "wildcardDomain": "apps.example.com",
            "apicast": {"productionSpec": _component_spec(), "stagingSpec": _component_spec()},
            "backend": {"listenerSpec": _component_spec(), "workerSpec": _component_spec()},
        },
    })
    cluster.put("keycloaks", prefix + "user-sso", {
        "apiVersion": "keycloak.org/v1alpha1",
        "kind": "Keycloak",
        "metadata": {"name": "rhssouser"},
        "spec": {"instances": 1, "keycloakDeploymentSpec": {"imagePullPolicy": "Always"}},
    })
    cluster.put(DEPLOYMENTS, prefix + "marin3r", _deployment("ratelimit", containers=("ratelimit",)))
    cluster.put(DEPLOYMENTS, prefix + "customer-monitoring",
                _deployment("grafana", containers=("grafana", "grafana-proxy")))


@pytest.fixture
def governed_cluster(cluster):
    """Cluster holding every governed resource of a managed-api installation."""
    seed_governed_resources(cluster)
    return cluster

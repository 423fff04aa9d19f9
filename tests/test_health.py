"""Tests for health condition aggregation and reporting."""

import pytest
from kubernetes.client.rest import ApiException

from rhmi_operator.config import ADDON_INSTANCE_NAME
from rhmi_operator.health import HealthAggregator, set_condition
from rhmi_operator.installation import Installation, Phase

from conftest import OPERATOR_NAMESPACE

ADDON_PLURAL = "addoninstances"


def conditions_by_type(conditions):
    return {condition["type"]: condition for condition in conditions}


@pytest.fixture
def installed(make_installation, completed_status):
    return Installation.from_crd(make_installation(status=completed_status()))


@pytest.fixture
def addon_cluster(governed_cluster):
    governed_cluster.put(ADDON_PLURAL, OPERATOR_NAMESPACE, {
        "apiVersion": "addons.managed.openshift.io/v1alpha1",
        "kind": "AddonInstance",
        "metadata": {"name": ADDON_INSTANCE_NAME},
        "spec": {"heartbeatUpdatePeriod": "30s"},
    })
    return governed_cluster


class TestSetCondition:

    def test_adds_condition(self):
        conditions = set_condition([], "Healthy", True, "ReconcileSucceeded", "", now="2024-01-01T00:00:00Z")

        assert conditions == [{
            "type": "Healthy",
            "status": "True",
            "reason": "ReconcileSucceeded",
            "message": "",
            "lastTransitionTime": "2024-01-01T00:00:00Z",
        }]

    def test_keeps_transition_time_when_status_unchanged(self):
        conditions = set_condition([], "Degraded", False, "AllComponentsHealthy", "", now="2024-01-01T00:00:00Z")

        set_condition(conditions, "Degraded", False, "AllComponentsHealthy", "", now="2024-01-02T00:00:00Z")

        assert conditions[0]["lastTransitionTime"] == "2024-01-01T00:00:00Z"

    def test_moves_transition_time_on_change(self):
        conditions = set_condition([], "Degraded", False, "AllComponentsHealthy", "", now="2024-01-01T00:00:00Z")

        set_condition(conditions, "Degraded", True, "ComponentsDegraded", "3scale", now="2024-01-02T00:00:00Z")

        assert len(conditions) == 1
        assert conditions[0]["status"] == "True"
        assert conditions[0]["lastTransitionTime"] == "2024-01-02T00:00:00Z"


class TestHealthAggregator:

    def test_healthy_installation(self, governed_cluster, installed):
        conditions = conditions_by_type(HealthAggregator(governed_cluster).build_conditions(installed, True))

        assert conditions["Installed"]["status"] == "True"
        assert conditions["Healthy"]["status"] == "True"
        assert conditions["Degraded"]["status"] == "False"

    def test_not_installed_yet(self, cluster, make_installation):
        installation = Installation.from_crd(make_installation())

        conditions = conditions_by_type(HealthAggregator(cluster).build_conditions(installation, True))

        assert conditions["Installed"]["status"] == "False"
        assert conditions["Degraded"]["status"] == "True"

    def test_installed_is_monotonic(self, cluster, make_installation):
        installation = Installation.from_crd(make_installation())
        previous = [{"type": "Installed", "status": "True", "reason": "InstallationComplete",
                     "message": "", "lastTransitionTime": "2024-01-01T00:00:00Z"}]

        conditions = HealthAggregator(cluster).build_conditions(installation, True, previous)

        assert conditions_by_type(conditions)["Installed"]["status"] == "True"

    def test_missing_core_namespace_degrades(self, governed_cluster, installed):
        governed_cluster.namespaces.discard("redhat-rhoam-3scale")

        degraded = HealthAggregator(governed_cluster).degraded_components(installed)

        assert degraded == ["3scale: namespace redhat-rhoam-3scale is missing"]

    def test_non_core_product_does_not_degrade(self, governed_cluster, installed):
        governed_cluster.namespaces.discard("redhat-rhoam-marin3r")
        installed.get_product_status("grafana").phase = Phase.FAILED

        assert HealthAggregator(governed_cluster).degraded_components(installed) == []

    def test_incomplete_core_product_degrades(self, governed_cluster, installed):
        installed.get_product_status("rhsso").phase = Phase.IN_PROGRESS

        degraded = HealthAggregator(governed_cluster).degraded_components(installed)

        assert degraded == ["rhsso: phase is 'in progress'"]

    def test_unhealthy_pass_carries_last_error(self, governed_cluster, installed):
        installed.status.last_error = "installation step failed: unknown installation type: bogus"

        conditions = conditions_by_type(HealthAggregator(governed_cluster).build_conditions(installed, False))

        assert conditions["Healthy"]["status"] == "False"
        assert conditions["Healthy"]["message"] == "installation step failed: unknown installation type: bogus"


class TestHealthReport:

    def test_writes_conditions(self, addon_cluster, installed):
        errors = HealthAggregator(addon_cluster).report(installed, True)

        assert errors == []
        addon = addon_cluster.get(ADDON_PLURAL, OPERATOR_NAMESPACE, ADDON_INSTANCE_NAME)
        assert {c["type"] for c in addon["status"]["conditions"]} == {"Installed", "Healthy", "Degraded"}
        assert addon["status"]["lastHeartbeatTime"]
        assert addon["spec"] == {"heartbeatUpdatePeriod": "30s"}

    def test_skips_write_when_unchanged(self, addon_cluster, installed):
        aggregator = HealthAggregator(addon_cluster)
        aggregator.report(installed, True)
        writes = len(addon_cluster.writes)

        aggregator.report(installed, True)

        assert len(addon_cluster.writes) == writes

    def test_writes_on_change(self, addon_cluster, installed):
        aggregator = HealthAggregator(addon_cluster)
        aggregator.report(installed, True)
        writes = len(addon_cluster.writes)

        aggregator.report(installed, False)

        assert len(addon_cluster.writes) == writes + 1
        addon = addon_cluster.get(ADDON_PLURAL, OPERATOR_NAMESPACE, ADDON_INSTANCE_NAME)
        assert conditions_by_type(addon["status"]["conditions"])["Healthy"]["status"] == "False"

    def test_missing_addon_instance(self, governed_cluster, installed):
        assert HealthAggregator(governed_cluster).report(installed, True) == []
        assert governed_cluster.writes == []

    def test_api_error(self, addon_cluster, installed):
        addon_cluster.failures[ADDON_PLURAL] = ApiException(status=500, reason="Internal Server Error")

        errors = HealthAggregator(addon_cluster).report(installed, True)

        assert len(errors) == 1
        assert "Internal Server Error" in errors[0]

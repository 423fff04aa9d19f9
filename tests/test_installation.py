"""Tests for the installation model and stage definitions."""

import pytest

from rhmi_operator.errors import UnknownInstallationTypeError
from rhmi_operator.installation import Installation, InstallationStatus, Phase, derive_stage_phase
from rhmi_operator.stages import (
    CORE_PRODUCTS,
    get_install_stages,
    product_namespace_suffix,
    products_for_type,
)


class TestDeriveStagePhase:

    def test_all_completed(self):
        assert derive_stage_phase([Phase.COMPLETED, Phase.COMPLETED]) == Phase.COMPLETED

    def test_empty_stage_is_completed(self):
        assert derive_stage_phase([]) == Phase.COMPLETED

    def test_failed_product_fails_stage(self):
        phases = [Phase.COMPLETED, Phase.FAILED, Phase.IN_PROGRESS]
        assert derive_stage_phase(phases) == Phase.FAILED

    def test_all_not_started(self):
        assert derive_stage_phase([Phase.NOT_STARTED, Phase.NOT_STARTED]) == Phase.NOT_STARTED

    def test_mixed_is_in_progress(self):
        assert derive_stage_phase([Phase.COMPLETED, Phase.NOT_STARTED]) == Phase.IN_PROGRESS
        assert derive_stage_phase([Phase.IN_PROGRESS]) == Phase.IN_PROGRESS


class TestPhase:

    def test_parse_known_values(self):
        assert Phase.parse("completed") == Phase.COMPLETED
        assert Phase.parse("in progress") == Phase.IN_PROGRESS
        assert Phase.parse("") == Phase.NOT_STARTED
        assert Phase.parse(None) == Phase.NOT_STARTED

    def test_parse_unknown_value(self):
        assert Phase.parse("awaiting components") == Phase.IN_PROGRESS


class TestInstallation:

    def test_from_crd_defaults(self, make_installation):
        installation = Installation.from_crd(make_installation())

        assert installation.name == "rhoam"
        assert installation.type == "managed-api"
        assert installation.maintenance_apply_from == "Thu 02:00"
        assert installation.backup_apply_on == "03:01"
        assert installation.use_cluster_storage is False
        assert installation.status.stages == {}
        assert not installation.is_installed()

    def test_from_crd_spec_fields(self, make_installation):
        crd = make_installation(spec={
            "useClusterStorage": "true",
            "maintenance": {"applyFrom": "Mon 10:00"},
            "backup": {"applyOn": "22:00"},
        })

        installation = Installation.from_crd(crd)

        assert installation.use_cluster_storage is True
        assert installation.maintenance_apply_from == "Mon 10:00"
        assert installation.backup_apply_on == "22:00"

    def test_product_namespace(self, make_installation):
        installation = Installation.from_crd(make_installation())
        assert installation.product_namespace("3scale") == "redhat-rhoam-3scale"

    def test_status_round_trip_keeps_wire_keys(self, completed_status):
        raw = completed_status()
        raw["quota"] = "1 Million"
        raw["toQuota"] = "20 Million"

        status = InstallationStatus.from_dict(raw)

        assert status.to_quota == "20 Million"
        assert status.to_dict() == raw

    def test_get_product_status(self, make_installation, completed_status):
        installation = Installation.from_crd(make_installation(status=completed_status()))

        assert installation.is_installed()
        assert installation.get_product_status("3scale").phase == Phase.COMPLETED
        assert installation.get_product_status("fuse") is None


class TestStages:

    def test_managed_api_stages(self):
        stages = get_install_stages("managed-api")

        assert [stage.name for stage in stages] == ["bootstrap", "installation"]
        assert stages[0].products == ()
        assert "marin3r" in stages[1].products

    def test_multitenant_has_no_user_sso(self):
        assert "rhssouser" not in products_for_type("multitenant-managed-api")
        assert "rhssouser" in products_for_type("managed-api")

    def test_managed_stage_order(self):
        names = [stage.name for stage in get_install_stages("managed")]
        assert names == [
            "bootstrap", "cloud-resources", "monitoring", "authentication", "products", "solution-explorer",
        ]

    def test_unknown_type(self):
        with pytest.raises(UnknownInstallationTypeError):
            get_install_stages("workshop-of-doom")

    def test_namespace_suffixes(self):
        assert product_namespace_suffix("rhssouser") == "user-sso"
        assert product_namespace_suffix("3scale") == "3scale"

    def test_core_products(self):
        assert "3scale" in CORE_PRODUCTS
        assert "marin3r" not in CORE_PRODUCTS

"""Tests for quantity parsing and requirement comparison."""

from decimal import Decimal

import pytest

from rhmi_operator.utils import parse_cpu, parse_memory, requirements_match


class TestParseQuantities:

    @pytest.mark.parametrize("value,expected", [
        ("100m", 0.1),
        ("1", 1.0),
        (0.25, 0.25),
        ("", 0.0),
        (None, 0.0),
    ])
    def test_cpu(self, value, expected):
        assert parse_cpu(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value,expected", [
        ("128Mi", 134217728),
        ("512M", 512000000),
        ("1126400m", Decimal("1126.4")),
        ("1P", 10 ** 15),
        ("2E", 2 * 10 ** 18),
        ("", 0),
    ])
    def test_memory(self, value, expected):
        assert parse_memory(value) == expected

    def test_invalid_memory(self):
        with pytest.raises(ValueError):
            parse_memory("plenty")


class TestRequirementsMatch:

    def test_equivalent_quantities_match(self):
        actual = {"requests": {"cpu": "0.25", "memory": "1126400m"}}
        desired = {"requests": {"cpu": "250m", "memory": "1.1Ki"}}

        assert requirements_match(actual, desired)

    def test_only_desired_keys_are_compared(self):
        actual = {"requests": {"cpu": "250m", "ephemeral-storage": "1Gi"}, "limits": {"cpu": "1"}}

        assert requirements_match(actual, {"requests": {"cpu": "250m"}})
        assert not requirements_match(actual, {"limits": {"memory": "1Gi"}})

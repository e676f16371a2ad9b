"""
Tests for table name resolution and the naming policy.
"""

import pytest

from order_loader.core.table_name_resolver import TableNameResolver
from order_loader.utils.error_handler import ConfigurationError, InvalidTableNameError

DEFAULT = "송장출력_사방넷원본변환"


@pytest.fixture
def resolver():
    return TableNameResolver(
        DEFAULT,
        references={
            "Tables.Invoice.Test": "송장출력_Test",
            "Tables.Invoice.Blank": "  ",
            "Tables.Invoice.Bad": "orders; DROP TABLE x",
        },
    )


class TestResolve:
    """Test candidate resolution."""

    @pytest.mark.parametrize("candidate", [None, "", "   "])
    def test_blank_resolves_to_default(self, resolver, candidate):
        assert resolver.resolve(candidate) == DEFAULT

    def test_plain_name_passes_through(self, resolver):
        assert resolver.resolve("invoice_2024") == "invoice_2024"

    def test_hangul_name_passes_through(self, resolver):
        assert resolver.resolve("송장_서울") == "송장_서울"

    def test_configured_reference(self, resolver):
        assert resolver.resolve("Tables.Invoice.Test") == "송장출력_Test"

    def test_unconfigured_reference_falls_back(self, resolver):
        assert resolver.resolve("Tables.Invoice.Missing") == DEFAULT

    def test_blank_reference_value_falls_back(self, resolver):
        assert resolver.resolve("Tables.Invoice.Blank") == DEFAULT

    def test_unsafe_reference_value_rejected(self, resolver):
        with pytest.raises(InvalidTableNameError):
            resolver.resolve("Tables.Invoice.Bad")

    @pytest.mark.parametrize(
        "candidate",
        [
            "Orders; DROP TABLE x",
            "1orders",
            "orders-2024",
            "orders name",
            "orders\n",
            "select",
            "DROP",
            "a" * 65,
        ],
    )
    def test_unsafe_names_rejected(self, resolver, candidate):
        with pytest.raises(InvalidTableNameError) as exc_info:
            resolver.resolve(candidate)

        assert exc_info.value.table_name == candidate
        assert exc_info.value.reason

    def test_rejection_is_a_configuration_error(self, resolver):
        with pytest.raises(ConfigurationError):
            resolver.resolve("bad name")

    def test_max_length_accepted(self, resolver):
        name = "a" * TableNameResolver.MAX_LENGTH
        assert resolver.resolve(name) == name


class TestNamingPolicy:
    """Test the static naming checks."""

    @pytest.mark.parametrize("name", ["_orders", "Orders2", "송장", "a"])
    def test_valid_names(self, name):
        assert TableNameResolver.is_valid_table_name(name)

    @pytest.mark.parametrize("name", [None, "", "2x", "a.b", "INSERT", "Where"])
    def test_invalid_names(self, name):
        assert not TableNameResolver.is_valid_table_name(name)

    def test_reserved_word_reason(self):
        assert "reserved" in TableNameResolver.validation_failure("table")

    def test_invalid_default_rejected(self):
        with pytest.raises(InvalidTableNameError):
            TableNameResolver("bad-default")


class TestResolutionProperties:
    """Test resolver behaviour across repeated calls."""

    def test_reserved_word_inside_name_is_allowed(self, resolver):
        assert resolver.resolve("orders_select_backup") == "orders_select_backup"

    def test_resolution_is_idempotent(self, resolver):
        first = resolver.resolve("invoice_2024")
        assert resolver.resolve(first) == first
        assert resolver.resolve("Tables.Invoice.Test") == resolver.resolve("Tables.Invoice.Test")

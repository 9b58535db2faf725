"""
Unit tests for the entity registry and row id normalization.
"""

import pytest

from dbops.restorekit.errors import ConfigError
from dbops.restorekit.store.registry import (
    EntityRegistry,
    EntitySpec,
    KeyType,
    normalize_row_id,
)
from dbops.restorekit.store.relational_store import RelationalStore


class TestNormalizeRowId:
    """Tests for normalize_row_id."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("1", 1),
            (" 42 ", 42),
            (7, 7),
            ("abc", "abc"),
            ("12a", "12a"),
            ("-1", "-1"),
            ("\u0661\u0662", "\u0661\u0662"),
            ("\uff11", "\uff11"),
        ],
    )
    def test_auto(self, raw, expected):
        """All-digit ids become int, everything else stays a string."""
        assert normalize_row_id(raw) == expected

    def test_text_keeps_digits_as_string(self):
        assert normalize_row_id("1", KeyType.TEXT) == "1"
        assert normalize_row_id(5, KeyType.TEXT) == "5"

    def test_integer_rejects_non_digits(self):
        assert normalize_row_id("10", KeyType.INTEGER) == 10
        with pytest.raises(ValueError):
            normalize_row_id("uuid-1", KeyType.INTEGER)

    def test_integer_rejects_non_ascii_digits(self):
        with pytest.raises(ValueError):
            normalize_row_id("\u0661\u0662", KeyType.INTEGER)


class TestEntitySpec:
    """Tests for EntitySpec parsing."""

    def test_parse_name_only(self):
        spec = EntitySpec.parse("items")
        assert spec.name == "items"
        assert spec.key_type is KeyType.AUTO

    @pytest.mark.parametrize(
        "raw,key_type",
        [
            ("users:text", KeyType.TEXT),
            ("users:str", KeyType.TEXT),
            ("users:int", KeyType.INTEGER),
            ("users:INTEGER", KeyType.INTEGER),
        ],
    )
    def test_parse_key_type(self, raw, key_type):
        assert EntitySpec.parse(raw).key_type is key_type

    def test_invalid_name(self):
        with pytest.raises(ConfigError):
            EntitySpec("items; DROP TABLE x")

    def test_invalid_key_type(self):
        with pytest.raises(ConfigError):
            EntitySpec.parse("items:uuid")


class TestEntityRegistry:
    """Tests for EntityRegistry."""

    @pytest.fixture
    def store(self, tmp_path):
        return RelationalStore(
            tmp_path / "data.db",
            [EntitySpec("items"), EntitySpec("UserProfiles", KeyType.TEXT)],
            wal_mode=False,
        )

    @pytest.fixture
    def registry(self, store):
        return EntityRegistry.from_store(store)

    def test_from_store(self, registry):
        assert len(registry) == 2
        assert registry.names == ["items", "UserProfiles"]

    def test_exact_lookup(self, registry):
        assert registry.resolve("items").name == "items"

    def test_case_insensitive_lookup(self, registry):
        """Change logs may spell table names differently."""
        assert registry.resolve("userprofiles").name == "UserProfiles"
        assert "ITEMS" in registry

    def test_unknown_table(self, registry):
        assert registry.resolve("orders") is None
        assert "orders" not in registry

    def test_handle_key_type(self, registry):
        assert registry.resolve("items").normalize_key("3") == 3
        assert registry.resolve("UserProfiles").normalize_key("3") == "3"

"""
Entity registry: table name -> typed handle.

Change-log entries name their target table as a string. The registry maps
those names to TableHandle objects once, at startup, so replay never looks
entities up by reflection.

Invariants:
    - The registry is immutable after construction
    - Lookup is exact first, then case-insensitive
    - Row ids are normalized with the entity's key type before any mutation

How to change safely:
    - Adding an entity requires a restart; never register lazily during replay
    - Changing an entity's key type changes how existing keys compare, the
      snapshot must be restored again afterwards
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from ..errors import ConfigError

if TYPE_CHECKING:
    from .relational_store import RelationalStore, TableHandle

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_DIGITS = re.compile(r"[0-9]+")


class KeyType(Enum):
    """Primary key type of an entity."""

    AUTO = "auto"  # all digits -> int, anything else -> str
    INTEGER = "integer"
    TEXT = "text"

    @classmethod
    def parse(cls, raw: str) -> KeyType:
        aliases = {"int": cls.INTEGER, "str": cls.TEXT, "string": cls.TEXT}
        raw = raw.strip().lower()
        if raw in aliases:
            return aliases[raw]
        try:
            return cls(raw)
        except ValueError:
            raise ConfigError(f"Invalid key type '{raw}'. Must be one of: auto, integer, text")


def normalize_row_id(raw: int | str, key_type: KeyType = KeyType.AUTO) -> int | str:
    """Convert a row id into the entity's key type.

    Args:
        raw: Row id as found in a change log or snapshot row
        key_type: Entity key type

    Returns:
        int for all-digit ids (AUTO/INTEGER), str otherwise

    Raises:
        ValueError: If key_type is INTEGER and the id is not all digits
    """
    text = str(raw).strip()
    if key_type is KeyType.TEXT:
        return text
    if _DIGITS.fullmatch(text):
        return int(text)
    if key_type is KeyType.INTEGER:
        raise ValueError(f"Row id '{raw}' is not an integer")
    return text


@dataclass(frozen=True)
class EntitySpec:
    """Declaration of one recoverable entity.

    Attributes:
        name: Table name as used in change logs and snapshots
        key_type: Primary key type
    """

    name: str
    key_type: KeyType = KeyType.AUTO

    def __post_init__(self) -> None:
        if not _IDENTIFIER.match(self.name):
            raise ConfigError(f"Invalid table name '{self.name}'")

    @classmethod
    def parse(cls, raw: str) -> EntitySpec:
        """Parse "name" or "name:key_type" (as in RECOVERY_TABLES)."""
        name, _, key_type = raw.strip().partition(":")
        return cls(name=name.strip(), key_type=KeyType.parse(key_type) if key_type else KeyType.AUTO)


class EntityRegistry:
    """Immutable mapping from table name to TableHandle.

    Example:
        >>> registry = EntityRegistry.from_store(store)
        >>> handle = registry.resolve("items")
        >>> await handle.upsert(1, {"id": 1, "name": "A"})
    """

    def __init__(self, handles: dict[str, TableHandle]) -> None:
        self._handles = dict(handles)
        self._folded = {name.lower(): handle for name, handle in self._handles.items()}

    @classmethod
    def from_store(cls, store: RelationalStore) -> EntityRegistry:
        """Build the registry from every entity the store declares."""
        return cls({spec.name: store.handle(spec.name) for spec in store.entities})

    def resolve(self, table: str) -> TableHandle | None:
        """Find the handle for a table name.

        Returns:
            TableHandle, or None if the table is not registered
        """
        handle = self._handles.get(table)
        if handle is None and isinstance(table, str):
            handle = self._folded.get(table.lower())
        return handle

    @property
    def names(self) -> list[str]:
        return list(self._handles)

    def __contains__(self, table: object) -> bool:
        return isinstance(table, str) and self.resolve(table) is not None

    def __iter__(self) -> Iterator[TableHandle]:
        return iter(self._handles.values())

    def __len__(self) -> int:
        return len(self._handles)

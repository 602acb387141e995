"""
Table properties: a flat string map with a guard for reserved keys.

Reserved keys are owned by dedicated metadata (sort order, identifier fields, format version
and the like) and cannot be set or removed through the property map.
"""
import logging
from typing import Dict, Iterable, Iterator, Mapping, Optional

from errors import ReservedPropertyError

logger = logging.getLogger(__name__)

SORT_ORDER = "sort-order"
IDENTIFIER_FIELDS = "identifier-fields"
FORMAT_VERSION = "format-version"
CURRENT_SCHEMA = "current-schema"
DEFAULT_PARTITION_SPEC = "default-partition-spec"
PARTITION_SPEC = "partition-spec"
CURRENT_SNAPSHOT_ID = "current-snapshot-id"
UUID = "uuid"

RESERVED_PROPERTIES = frozenset({
    SORT_ORDER,
    IDENTIFIER_FIELDS,
    FORMAT_VERSION,
    CURRENT_SCHEMA,
    DEFAULT_PARTITION_SPEC,
    PARTITION_SPEC,
    CURRENT_SNAPSHOT_ID,
    UUID,
})


def validate_updates(keys: Iterable[str]) -> None:
    """Raise ReservedPropertyError for the first reserved key"""
    for key in keys:
        if key in RESERVED_PROPERTIES:
            raise ReservedPropertyError(key)


class TableProperties(Mapping[str, str]):
    """An immutable property map; `set` and `remove` return a new map."""

    def __init__(self, properties: Optional[Mapping[str, str]] = None):
        self._properties: Dict[str, str] = dict(properties or {})

    def set(self, updates: Optional[Mapping[str, str]] = None, **kwargs: str) -> 'TableProperties':
        changes = dict(updates or {})
        changes.update(kwargs)
        validate_updates(changes)
        for key, value in changes.items():
            if not isinstance(value, str):
                raise TypeError(f"Table property values must be strings: {key}={value!r}")

        logger.debug("Setting table properties: %s", changes)
        merged = dict(self._properties)
        merged.update(changes)
        return TableProperties(merged)

    def remove(self, *keys: str) -> 'TableProperties':
        validate_updates(keys)
        logger.debug("Removing table properties: %s", list(keys))
        return TableProperties({k: v for k, v in self._properties.items() if k not in keys})

    def __getitem__(self, key: str) -> str:
        return self._properties[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._properties)

    def __len__(self) -> int:
        return len(self._properties)

    def __repr__(self) -> str:
        return f"TableProperties({self._properties!r})"

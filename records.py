from typing import Any, Dict, Iterator, Optional, Sequence, Union

from schema_types import StructType


class Record:
    """
    Values of one struct, in the struct's field order.

    Records are immutable: `copy` returns a new record. Lookups by field id are what
    the resolver uses; names are a convenience for callers and tests.
    """

    __slots__ = ("struct", "_values", "_positions")

    def __init__(self, struct: StructType, values: Optional[Sequence[Any]] = None):
        if values is None:
            values = [None] * len(struct.fields)
        if len(values) != len(struct.fields):
            raise ValueError(f"Expected {len(struct.fields)} values for {struct}, got {len(values)}")
        self.struct = struct
        self._values = tuple(values)
        self._positions: Dict[int, int] = {f.field_id: pos for pos, f in enumerate(struct.fields)}

    @staticmethod
    def of(struct: StructType, **values: Any) -> 'Record':
        """Build a record from keyword arguments named after the struct's fields; missing fields are None"""
        names = {f.name for f in struct.fields}
        unknown = set(values) - names
        if unknown:
            raise ValueError(f"Unknown fields for {struct}: {sorted(unknown)}")
        return Record(struct, [values.get(f.name) for f in struct.fields])

    def get(self, pos: int) -> Any:
        return self._values[pos]

    def get_by_id(self, field_id: int, default: Any = None) -> Any:
        pos = self._positions.get(field_id)
        return default if pos is None else self._values[pos]

    def has_field(self, field_id: int) -> bool:
        return field_id in self._positions

    def get_field(self, name: str) -> Any:
        f = self.struct.field_by_name(name)
        if f is None:
            raise KeyError(name)
        return self._values[self._positions[f.field_id]]

    def __getitem__(self, key: Union[int, str]) -> Any:
        if isinstance(key, str):
            return self.get_field(key)
        return self._values[key]

    def copy(self, **overrides: Any) -> 'Record':
        values = list(self._values)
        for name, value in overrides.items():
            f = self.struct.field_by_name(name)
            if f is None:
                raise KeyError(name)
            values[self._positions[f.field_id]] = value
        return Record(self.struct, values)

    def as_dict(self) -> Dict[str, Any]:
        return {f.name: value for f, value in zip(self.struct.fields, self._values)}

    def values(self) -> tuple:
        return self._values

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._values)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return (tuple(self._positions) == tuple(other._positions)
                and self._values == other._values)

    def __hash__(self) -> int:
        return hash((tuple(self._positions), self._values))

    def __repr__(self) -> str:
        body = ", ".join(f"{f.name}={value!r}" for f, value in zip(self.struct.fields, self._values))
        return f"Record({body})"

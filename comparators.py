"""
Type-aware value equality.

Values are compared in their internal form: dates as days since epoch, times and timestamps
as micro- or nanosecond counts, decimals as unscaled integers and floating point numbers as
the bit pattern of the value widened to a double. `values_equal` is one tree walk over the
type, parameterized by the comparator used at the leaves.
"""
import datetime
import decimal
import struct
import uuid
from typing import Any, Callable, Hashable, Iterable, Tuple

from records import Record
from schema_types import (
    DecimalType, IcebergType, ListType, MapType, StructType, TimestampNanoType, TimestampType, TypeID,
)
from variant import Variant, variant_equal
from variant_util import DECIMAL_CONTEXT

EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)
EPOCH_NAIVE = EPOCH.replace(tzinfo=None)
EPOCH_DAY = datetime.date(1970, 1, 1)
ONE_MICRO = datetime.timedelta(microseconds=1)

LeafComparator = Callable[[IcebergType, Any, Any], bool]


def float_to_double_bits(value: float) -> int:
    """Bits of a 32-bit float after exact widening to a double"""
    widened = struct.unpack('<f', struct.pack('<f', value))[0]
    return double_bits(widened)


def double_bits(value: float) -> int:
    return struct.unpack('<q', struct.pack('<d', value))[0]


def date_to_days(value: Any) -> int:
    if isinstance(value, datetime.datetime):
        raise TypeError(f"Expected a date, not a datetime: {value!r}")
    if isinstance(value, datetime.date):
        return (value - EPOCH_DAY).days
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raise TypeError(f"Cannot convert to date: {value!r}")


def time_to_micros(value: Any) -> int:
    if isinstance(value, datetime.time):
        return ((value.hour * 60 + value.minute) * 60 + value.second) * 1_000_000 + value.microsecond
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raise TypeError(f"Cannot convert to time: {value!r}")


def timestamp_to_micros(value: Any, adjust_to_utc: bool) -> int:
    """
    Zoned timestamps are normalised to UTC. Naive timestamps compare by their wall-clock
    fields, so an aware value read as a naive timestamp drops its zone.
    """
    if isinstance(value, datetime.datetime):
        if adjust_to_utc and value.tzinfo is not None:
            return (value - EPOCH) // ONE_MICRO
        return (value.replace(tzinfo=None) - EPOCH_NAIVE) // ONE_MICRO
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raise TypeError(f"Cannot convert to timestamp: {value!r}")


def timestamp_to_nanos(value: Any, adjust_to_utc: bool) -> int:
    if isinstance(value, datetime.datetime):
        return timestamp_to_micros(value, adjust_to_utc) * 1000
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raise TypeError(f"Cannot convert to timestamp_ns: {value!r}")


def decimal_to_unscaled(value: Any, scale: int) -> int:
    if isinstance(value, float) or isinstance(value, bool):
        raise TypeError(f"Cannot convert to decimal without loss: {value!r}")
    scaled = decimal.Decimal(value).scaleb(scale, DECIMAL_CONTEXT)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Cannot represent {value} with scale {scale}")
    return int(scaled)


def to_internal(field_type: IcebergType, value: Any) -> Any:
    """Convert a primitive value to the internal form used for comparison"""
    if value is None:
        return None

    type_id = field_type.type_id
    if type_id == TypeID.BOOLEAN:
        if not isinstance(value, bool):
            raise TypeError(f"Expected a boolean: {value!r}")
        return value
    if type_id in (TypeID.INTEGER, TypeID.LONG):
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"Expected an integer: {value!r}")
        bits = 32 if type_id == TypeID.INTEGER else 64
        if not -2 ** (bits - 1) <= value < 2 ** (bits - 1):
            raise ValueError(f"Value out of range for {field_type}: {value}")
        return value
    if type_id in (TypeID.FLOAT, TypeID.DOUBLE):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"Expected a number: {value!r}")
        try:
            if type_id == TypeID.FLOAT:
                return float_to_double_bits(float(value))
            return double_bits(float(value))
        except OverflowError:
            raise ValueError(f"Value out of range for {field_type}: {value}")
    if type_id == TypeID.DECIMAL:
        assert isinstance(field_type, DecimalType)
        return decimal_to_unscaled(value, field_type.scale)
    if type_id == TypeID.DATE:
        return date_to_days(value)
    if type_id == TypeID.TIME:
        return time_to_micros(value)
    if type_id == TypeID.TIMESTAMP:
        assert isinstance(field_type, TimestampType)
        return timestamp_to_micros(value, field_type.adjust_to_utc)
    if type_id == TypeID.TIMESTAMP_NANO:
        assert isinstance(field_type, TimestampNanoType)
        return timestamp_to_nanos(value, field_type.adjust_to_utc)
    if type_id == TypeID.STRING:
        if not isinstance(value, str):
            raise TypeError(f"Expected a string: {value!r}")
        return value
    if type_id == TypeID.UUID:
        if isinstance(value, uuid.UUID):
            return value
        if isinstance(value, (bytes, bytearray)):
            return uuid.UUID(bytes=bytes(value))
        return uuid.UUID(str(value))
    if type_id in (TypeID.FIXED, TypeID.BINARY):
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise TypeError(f"Expected bytes: {value!r}")
        data = bytes(value)
        if type_id == TypeID.FIXED and len(data) != field_type.length:  # type: ignore[attr-defined]
            raise ValueError(f"Expected {field_type.length} bytes for {field_type}, got {len(data)}")  # type: ignore[attr-defined]
        return data
    if type_id == TypeID.VARIANT:
        if not isinstance(value, Variant):
            raise TypeError(f"Expected a Variant: {value!r}")
        return value
    raise TypeError(f"Not a primitive type: {field_type}")


def primitive_equal(field_type: IcebergType, a: Any, b: Any) -> bool:
    if field_type.type_id == TypeID.VARIANT:
        return variant_equal(a, b)
    return to_internal(field_type, a) == to_internal(field_type, b)


def values_equal(field_type: IcebergType, a: Any, b: Any, leaf: LeafComparator = primitive_equal) -> bool:
    """Compare two values of `field_type`, descending into structs, lists and maps"""
    if a is None or b is None:
        return a is None and b is None

    if isinstance(field_type, StructType):
        # Fields are matched by id, so records with different field order still compare
        return all(
            values_equal(f.field_type, _field_value(a, f.field_id), _field_value(b, f.field_id), leaf)
            for f in field_type.fields
        )

    if isinstance(field_type, ListType):
        if len(a) != len(b):
            return False
        return all(values_equal(field_type.element_type, x, y, leaf) for x, y in zip(a, b))

    if isinstance(field_type, MapType):
        a_items = list(map_items(a))
        b_items = list(map_items(b))
        if len(a_items) != len(b_items):
            return False
        # Keys are matched with the key type's equality, not python's
        for a_key, a_value in a_items:
            for b_key, b_value in b_items:
                if values_equal(field_type.key_type, a_key, b_key, leaf):
                    if not values_equal(field_type.value_type, a_value, b_value, leaf):
                        return False
                    break
            else:
                return False
        return True

    return leaf(field_type, a, b)


def _field_value(record: Record, field_id: int) -> Any:
    return record.get_by_id(field_id)


def map_items(value: Any) -> Iterable[Tuple[Any, Any]]:
    """Key/value pairs of a map value given as a dict or as a sequence of pairs"""
    if isinstance(value, dict):
        return value.items()
    return value


def hashable_internal(field_type: IcebergType, value: Any) -> Hashable:
    """A hashable form consistent with `values_equal`"""
    if value is None:
        return None
    if isinstance(field_type, StructType):
        return tuple(hashable_internal(f.field_type, value.get_by_id(f.field_id)) for f in field_type.fields)
    if isinstance(field_type, ListType):
        return tuple(hashable_internal(field_type.element_type, v) for v in value)
    if isinstance(field_type, MapType):
        return frozenset(
            (hashable_internal(field_type.key_type, k), hashable_internal(field_type.value_type, v))
            for k, v in map_items(value)
        )
    if field_type.type_id == TypeID.VARIANT:
        # Variant equality is semantic; all variants share a bucket
        return TypeID.VARIANT
    return to_internal(field_type, value)


class RecordKey:
    """Wraps a record so it can be used in sets and as a dict key, compared by value under a struct type"""

    __slots__ = ("struct", "record", "_hash")

    def __init__(self, struct: StructType, record: Record):
        self.struct = struct
        self.record = record
        self._hash = hash(hashable_internal(struct, record))

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, RecordKey):
            return NotImplemented
        return values_equal(self.struct, self.record, other.record)

    def __hash__(self) -> int:
        return self._hash

    def __repr__(self) -> str:
        return f"RecordKey({self.record!r})"

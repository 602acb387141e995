"""
Seeded generation of records for a schema.

The same seed always yields the same records, so tests that fail on generated data can be
replayed. Values are in the python forms the comparators and resolver accept.
"""
import datetime
import decimal
import random
import string
import struct
import uuid
from typing import Any, List, Tuple

from comparators import values_equal
from records import Record
from schema import Schema
from schema_types import DecimalType, FixedType, IcebergType, ListType, MapType, StructType, TypeID
from variant import Variant
from variant_builder import VariantBuilder
from variant_util import DECIMAL_CONTEXT

EPOCH_DAY = datetime.date(1970, 1, 1)
EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)
# 1900-01-01 through 2099-12-31
MIN_DAY = -25567
MAX_DAY = 47481
MICROS_PER_DAY = 86_400_000_000


def _to_float32(value: float) -> float:
    return struct.unpack('<f', struct.pack('<f', value))[0]


def _random_string(rng: random.Random, max_length: int = 12) -> str:
    return ''.join(rng.choice(string.ascii_letters + string.digits) for _ in range(rng.randint(0, max_length)))


class RandomDataGenerator:
    """
    Args:
        seed: Seed for the generator.
        null_rate: Chance that an optional value is null.
        max_elements: Upper bound on list and map sizes.
    """

    def __init__(self, seed: int = 0, null_rate: float = 0.1, max_elements: int = 4):
        self.rng = random.Random(seed)
        self.null_rate = null_rate
        self.max_elements = max_elements

    def records(self, schema: Schema, count: int) -> List[Record]:
        return [self.struct(schema.as_struct()) for _ in range(count)]

    def struct(self, struct_type: StructType) -> Record:
        return Record(struct_type, [
            self.value(f.field_type, f.required) for f in struct_type.fields
        ])

    def value(self, field_type: IcebergType, required: bool = False) -> Any:
        if not required and self.rng.random() < self.null_rate:
            return None
        if isinstance(field_type, StructType):
            return self.struct(field_type)
        if isinstance(field_type, ListType):
            return [self.value(field_type.element_type, field_type.element_field.required)
                    for _ in range(self.rng.randint(0, self.max_elements))]
        if isinstance(field_type, MapType):
            # Pairs rather than a dict: variant keys and struct keys holding lists are not hashable
            pairs: List[Tuple[Any, Any]] = []
            for _ in range(self.rng.randint(0, self.max_elements)):
                key = self.value(field_type.key_type, True)
                value = self.value(field_type.value_type, field_type.value_field.required)
                if not any(values_equal(field_type.key_type, key, k) for k, _ in pairs):
                    pairs.append((key, value))
            return pairs
        return self.primitive(field_type)

    def primitive(self, field_type: IcebergType) -> Any:
        rng = self.rng
        type_id = field_type.type_id
        if type_id == TypeID.BOOLEAN:
            return rng.random() < 0.5
        if type_id == TypeID.INTEGER:
            return rng.randint(-2 ** 31, 2 ** 31 - 1)
        if type_id == TypeID.LONG:
            return rng.randint(-2 ** 63, 2 ** 63 - 1)
        if type_id == TypeID.FLOAT:
            return _to_float32(rng.uniform(-1e6, 1e6))
        if type_id == TypeID.DOUBLE:
            return rng.uniform(-1e12, 1e12)
        if type_id == TypeID.DECIMAL:
            assert isinstance(field_type, DecimalType)
            unscaled = rng.randint(-(10 ** field_type.precision - 1), 10 ** field_type.precision - 1)
            return decimal.Decimal(unscaled).scaleb(-field_type.scale, DECIMAL_CONTEXT)
        if type_id == TypeID.DATE:
            return EPOCH_DAY + datetime.timedelta(days=rng.randint(MIN_DAY, MAX_DAY))
        if type_id == TypeID.TIME:
            micros = rng.randint(0, MICROS_PER_DAY - 1)
            return (datetime.datetime.min + datetime.timedelta(microseconds=micros)).time()
        if type_id == TypeID.TIMESTAMP:
            ts = EPOCH + datetime.timedelta(days=rng.randint(MIN_DAY, MAX_DAY),
                                            microseconds=rng.randint(0, MICROS_PER_DAY - 1))
            return ts if field_type.adjust_to_utc else ts.replace(tzinfo=None)  # type: ignore[attr-defined]
        if type_id == TypeID.TIMESTAMP_NANO:
            return rng.randint(MIN_DAY, MAX_DAY) * MICROS_PER_DAY * 1000 + rng.randint(0, MICROS_PER_DAY * 1000 - 1)
        if type_id == TypeID.STRING:
            return _random_string(rng)
        if type_id == TypeID.UUID:
            return uuid.UUID(int=rng.getrandbits(128), version=4)
        if type_id == TypeID.FIXED:
            assert isinstance(field_type, FixedType)
            return bytes(rng.getrandbits(8) for _ in range(field_type.length))
        if type_id == TypeID.BINARY:
            return bytes(rng.getrandbits(8) for _ in range(rng.randint(0, 16)))
        if type_id == TypeID.VARIANT:
            return self.variant()
        raise ValueError(f"Cannot generate values for {field_type}")

    def variant(self, max_depth: int = 2) -> Variant:
        return VariantBuilder.from_python(self._variant_value(max_depth))

    def _variant_value(self, depth: int) -> Any:
        rng = self.rng
        choice = rng.randint(0, 7 if depth > 0 else 5)
        if choice == 0:
            return None
        if choice == 1:
            return rng.random() < 0.5
        if choice == 2:
            return rng.randint(-2 ** 40, 2 ** 40)
        if choice == 3:
            return rng.uniform(-1e6, 1e6)
        if choice == 4:
            return _random_string(rng)
        if choice == 5:
            return decimal.Decimal(rng.randint(-10 ** 9, 10 ** 9)).scaleb(-rng.randint(0, 6))
        if choice == 6:
            return [self._variant_value(depth - 1) for _ in range(rng.randint(0, self.max_elements))]
        return {_random_string(rng, 6): self._variant_value(depth - 1) for _ in range(rng.randint(0, self.max_elements))}


def generate(schema: Schema, count: int, seed: int = 0, null_rate: float = 0.1) -> List[Record]:
    return RandomDataGenerator(seed, null_rate).records(schema, count)


def generate_variant(seed: int = 0, max_depth: int = 2) -> Variant:
    return RandomDataGenerator(seed).variant(max_depth)

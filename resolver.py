"""
Projection of records written under one schema onto the shape of another.

`build_plan(expected, actual)` walks the expected schema once, matching fields to the actual
schema by id, and produces a `Plan` of per-field readers. Type checks happen while building,
so `Plan.apply` only moves and converts values. A plan holds no per-record state and can be
shared between threads.
"""
import logging
import struct
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from comparators import map_items
from errors import IncompatibleTypeError, MissingRequiredFieldError, UnresolvableTypeError
from metadata_columns import is_metadata_column, metadata_value
from records import Record
from schema import Schema
from schema_types import IcebergType, ListType, MapType, NestedField, StructType, TypeID, promote

logger = logging.getLogger(__name__)

Constants = Optional[Mapping[int, Any]]
Converter = Callable[[Any], Any]
FieldReader = Callable[[Record, Constants, Optional[int]], Any]


def _identity(value: Any) -> Any:
    return value


def _widen_float(value: Any) -> float:
    # The stored value is a 32-bit float; widening is exact once it is rounded to one
    return struct.unpack('<f', struct.pack('<f', value))[0]


def _converter(name: str, expected: IcebergType, actual: IcebergType) -> Converter:
    """Build the value converter for one field, raising UnresolvableTypeError when the types do not match"""
    if isinstance(expected, StructType):
        if not isinstance(actual, StructType):
            raise UnresolvableTypeError(name, actual, expected)
        plan = _StructPlan(name, expected, actual)
        return plan.convert

    if isinstance(expected, ListType):
        if not isinstance(actual, ListType):
            raise UnresolvableTypeError(name, actual, expected)
        element = _child_converter(f"{name}.element", expected.element_field, actual.element_field)
        return lambda value: [element(v) for v in value]

    if isinstance(expected, MapType):
        if not isinstance(actual, MapType):
            raise UnresolvableTypeError(name, actual, expected)
        key = _child_converter(f"{name}.key", expected.key_field, actual.key_field)
        val = _child_converter(f"{name}.value", expected.value_field, actual.value_field)

        def convert_map(value: Any) -> Any:
            # A map given as key/value pairs stays a list of pairs; keys are not merged
            if isinstance(value, dict):
                return {key(k): val(v) for k, v in value.items()}
            return [(key(k), val(v)) for k, v in map_items(value)]

        return convert_map

    if actual.is_nested:
        raise UnresolvableTypeError(name, actual, expected)
    try:
        promote(actual, expected)
    except IncompatibleTypeError:
        raise UnresolvableTypeError(name, actual, expected)
    if actual.type_id == TypeID.FLOAT and expected.type_id == TypeID.DOUBLE:
        return _widen_float
    # int to long and decimal precision widening keep the value as is
    return _identity


def _child_converter(name: str, expected: NestedField, actual: NestedField) -> Converter:
    """Converter for a list element or map key/value, checking required values per element"""
    convert = _converter(name, expected.field_type, actual.field_type)
    if not expected.required:
        return lambda value: None if value is None else convert(value)

    def convert_required(value: Any) -> Any:
        if value is None:
            raise MissingRequiredFieldError(name, expected.field_id)
        return convert(value)

    return convert_required


class _StructPlan:
    """Readers for the fields of one expected struct, in expected order"""

    def __init__(self, prefix: str, expected: StructType, actual: StructType):
        self.struct = expected
        self.readers: List[FieldReader] = [
            self._reader(f"{prefix}.{f.name}" if prefix else f.name, f, actual.field(f.field_id))
            for f in expected.fields
        ]

    @staticmethod
    def _reader(name: str, expected: NestedField, actual: Optional[NestedField]) -> FieldReader:
        field_id = expected.field_id
        required = expected.required

        if is_metadata_column(field_id):
            stored_id = None if actual is None else actual.field_id

            def read_metadata(record: Record, constants: Constants, pos: Optional[int]) -> Any:
                stored = None if stored_id is None else record.get_by_id(stored_id)
                value = metadata_value(field_id, stored, constants, pos)
                if value is None and required:
                    raise MissingRequiredFieldError(name, field_id)
                return value

            return read_metadata

        if actual is None:
            default = expected.initial_default
            if default is None and required:
                raise MissingRequiredFieldError(name, field_id)
            return lambda record, constants, pos: default

        convert = _converter(name, expected.field_type, actual.field_type)

        def read(record: Record, constants: Constants, pos: Optional[int]) -> Any:
            value = record.get_by_id(field_id)
            if value is None:
                if required:
                    raise MissingRequiredFieldError(name, field_id)
                return None
            return convert(value)

        return read

    def apply(self, record: Record, constants: Constants = None, pos: Optional[int] = None) -> Record:
        return Record(self.struct, [read(record, constants, pos) for read in self.readers])

    def convert(self, record: Record) -> Record:
        return self.apply(record)


class Plan:
    """
    The resolution of one (expected, actual) schema pair.

    `apply` raises MissingRequiredFieldError for a record that has no value for a required
    field; the plan itself stays valid for later records.
    """

    def __init__(self, expected: Schema, actual: Schema):
        self.expected = expected
        self.actual = actual
        self._root = _StructPlan("", expected.as_struct(), actual.as_struct())

    def apply(self, record: Record, constants: Constants = None, pos: Optional[int] = None) -> Record:
        """
        Project `record`, written under the actual schema, onto the expected schema.

        Args:
            record: A record of the actual schema's top-level struct.
            constants: Values for metadata columns keyed by field id, such as the first row id
                of the file the record was read from.
            pos: The position of the record in its file.
        """
        return self._root.apply(record, constants, pos)

    def __repr__(self) -> str:
        return f"Plan(expected={self.expected.schema_id}, actual={self.actual.schema_id})"


def build_plan(expected: Schema, actual: Schema) -> Plan:
    """Raises UnresolvableTypeError or MissingRequiredFieldError when no record of `actual` could be projected"""
    logger.debug("Building resolution plan from schema %d to schema %d", actual.schema_id, expected.schema_id)
    return Plan(expected, actual)


def resolve(expected: Schema, actual: Schema, record: Record, constants: Constants = None,
            pos: Optional[int] = None) -> Record:
    return build_plan(expected, actual).apply(record, constants, pos)


class Resolver:
    """
    Memoizes plans by the (expected, actual) schema id pair.

    Schema ids are only unique within one table's history, so use one Resolver per table.
    """

    def __init__(self):
        self._plans: Dict[Tuple[int, int], Plan] = {}

    def plan(self, expected: Schema, actual: Schema) -> Plan:
        key = (expected.schema_id, actual.schema_id)
        plan = self._plans.get(key)
        if plan is None:
            plan = build_plan(expected, actual)
            self._plans[key] = plan
        return plan

    def resolve(self, expected: Schema, actual: Schema, record: Record, constants: Constants = None,
                pos: Optional[int] = None) -> Record:
        return self.plan(expected, actual).apply(record, constants, pos)

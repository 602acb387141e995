"""
JSON form of schemas, used to hand schema versions to the persistence layer.

The layout follows the table format's metadata JSON: a struct with `schema-id`,
`identifier-field-ids` and ordered `fields`; lists and maps spell out their element, key and
value ids. Default values use the single-value JSON encoding (decimals, dates, times and
timestamps as strings, binary as hex).
"""
import base64
import datetime
import decimal
import json
import uuid
from typing import Any, Dict, Optional

from comparators import EPOCH, EPOCH_DAY, EPOCH_NAIVE, to_internal
from schema import Schema
from schema_types import (
    DecimalType, IcebergType, ListType, MapType, NestedField, StructType, TypeID, primitive_from_string,
)
from variant_util import DECIMAL_CONTEXT


def type_to_dict(field_type: IcebergType) -> Any:
    if isinstance(field_type, StructType):
        return {"type": "struct", "fields": [field_to_dict(f) for f in field_type.fields]}
    if isinstance(field_type, ListType):
        return {
            "type": "list",
            "element-id": field_type.element_id,
            "element": type_to_dict(field_type.element_type),
            "element-required": field_type.element_field.required,
        }
    if isinstance(field_type, MapType):
        return {
            "type": "map",
            "key-id": field_type.key_field.field_id,
            "key": type_to_dict(field_type.key_type),
            "value-id": field_type.value_field.field_id,
            "value": type_to_dict(field_type.value_type),
            "value-required": field_type.value_field.required,
        }
    if isinstance(field_type, DecimalType):
        return f"decimal({field_type.precision}, {field_type.scale})"
    return str(field_type)


def field_to_dict(f: NestedField) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "id": f.field_id,
        "name": f.name,
        "required": f.required,
        "type": type_to_dict(f.field_type),
    }
    if f.doc is not None:
        result["doc"] = f.doc
    if f.initial_default is not None:
        result["initial-default"] = default_to_json(f.field_type, f.initial_default)
    if f.write_default is not None:
        result["write-default"] = default_to_json(f.field_type, f.write_default)
    return result


def schema_to_dict(schema: Schema) -> Dict[str, Any]:
    return {
        "type": "struct",
        "schema-id": schema.schema_id,
        "identifier-field-ids": sorted(schema.identifier_field_ids),
        "fields": [field_to_dict(f) for f in schema.fields],
    }


def to_json(schema: Schema, indent: Optional[int] = None) -> str:
    return json.dumps(schema_to_dict(schema), indent=indent)


def type_from_dict(data: Any) -> IcebergType:
    if isinstance(data, str):
        return primitive_from_string(data)

    kind = data.get("type")
    if kind == "struct":
        return StructType(*(field_from_dict(f) for f in data["fields"]))
    if kind == "list":
        return ListType(NestedField(data["element-id"], "element", type_from_dict(data["element"]),
                                    data.get("element-required", False)))
    if kind == "map":
        return MapType(
            NestedField(data["key-id"], "key", type_from_dict(data["key"]), True),
            NestedField(data["value-id"], "value", type_from_dict(data["value"]), data.get("value-required", False)),
        )
    raise ValueError(f"Cannot parse type: {data!r}")


def field_from_dict(data: Dict[str, Any]) -> NestedField:
    field_type = type_from_dict(data["type"])
    return NestedField(
        data["id"],
        data["name"],
        field_type,
        data.get("required", False),
        data.get("doc"),
        default_from_json(field_type, data.get("initial-default")),
        default_from_json(field_type, data.get("write-default")),
    )


def schema_from_dict(data: Dict[str, Any]) -> Schema:
    return Schema(
        *(field_from_dict(f) for f in data["fields"]),
        schema_id=data.get("schema-id", 0),
        identifier_field_ids=data.get("identifier-field-ids", ()),
    )


def from_json(text: str) -> Schema:
    return schema_from_dict(json.loads(text))


def default_to_json(field_type: IcebergType, value: Any) -> Any:
    """Encode a primitive default as its single-value JSON form"""
    if value is None:
        return None
    # Validates the value against the type before encoding it
    internal = to_internal(field_type, value)
    type_id = field_type.type_id

    if type_id in (TypeID.BOOLEAN, TypeID.INTEGER, TypeID.LONG, TypeID.STRING):
        return value
    if type_id in (TypeID.FLOAT, TypeID.DOUBLE):
        return float(value)
    if type_id == TypeID.DECIMAL:
        assert isinstance(field_type, DecimalType)
        return format(decimal.Decimal(internal).scaleb(-field_type.scale, DECIMAL_CONTEXT), "f")
    if type_id == TypeID.DATE:
        return (EPOCH_DAY + datetime.timedelta(days=internal)).isoformat()
    if type_id == TypeID.TIME:
        return (datetime.datetime.min + datetime.timedelta(microseconds=internal)).time().isoformat()
    if type_id == TypeID.TIMESTAMP:
        if field_type.adjust_to_utc:  # type: ignore[attr-defined]
            return (EPOCH + datetime.timedelta(microseconds=internal)).isoformat()
        return (EPOCH_NAIVE + datetime.timedelta(microseconds=internal)).isoformat()
    if type_id == TypeID.TIMESTAMP_NANO:
        # datetime has microsecond precision, so nanosecond defaults are written as integers
        return internal
    if type_id == TypeID.UUID:
        return str(internal)
    if type_id in (TypeID.FIXED, TypeID.BINARY):
        return base64.b16encode(internal).decode("ascii")
    raise ValueError(f"Cannot write a default value for {field_type}")


def default_from_json(field_type: IcebergType, data: Any) -> Any:
    if data is None:
        return None
    type_id = field_type.type_id

    if type_id in (TypeID.BOOLEAN, TypeID.INTEGER, TypeID.LONG, TypeID.STRING, TypeID.TIMESTAMP_NANO):
        return data
    if type_id in (TypeID.FLOAT, TypeID.DOUBLE):
        return float(data)
    if type_id == TypeID.DECIMAL:
        return decimal.Decimal(data)
    if type_id == TypeID.DATE:
        return datetime.date.fromisoformat(data)
    if type_id == TypeID.TIME:
        return datetime.time.fromisoformat(data)
    if type_id == TypeID.TIMESTAMP:
        return datetime.datetime.fromisoformat(data)
    if type_id == TypeID.UUID:
        return uuid.UUID(data)
    if type_id in (TypeID.FIXED, TypeID.BINARY):
        return base64.b16decode(data, casefold=True)
    raise ValueError(f"Cannot read a default value for {field_type}")

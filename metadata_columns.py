"""
Reserved metadata columns.

Metadata columns use ids counted down from the largest 32-bit int so they never collide with
table columns. Their values usually are not stored in data files: the reader supplies them as
constants per file (the file path, the partition spec id, the first row id of the file) or
derives them from the row position.
"""
from typing import Any, Dict, Mapping, Optional

from schema_types import BooleanType, IntegerType, LongType, NestedField, StringType

MAX_FIELD_ID = 2147483647

FILE_PATH_ID = MAX_FIELD_ID - 1
ROW_POSITION_ID = MAX_FIELD_ID - 2
IS_DELETED_ID = MAX_FIELD_ID - 3
SPEC_ID_ID = MAX_FIELD_ID - 4
ROW_ID_ID = MAX_FIELD_ID - 107
LAST_UPDATED_SEQUENCE_NUMBER_ID = MAX_FIELD_ID - 108

FILE_PATH = NestedField.required_field(FILE_PATH_ID, "_file", StringType(), "Path of the file in which a row is stored")
ROW_POSITION = NestedField.required_field(ROW_POSITION_ID, "_pos", LongType(), "Ordinal position of a row in the source data file")
IS_DELETED = NestedField.required_field(IS_DELETED_ID, "_deleted", BooleanType(), "Whether the row has been deleted")
SPEC_ID = NestedField.required_field(SPEC_ID_ID, "_spec_id", IntegerType(), "Spec ID used to track the file containing a row")
ROW_ID = NestedField.optional_field(ROW_ID_ID, "_row_id", LongType(), "Implicit row ID that is automatically assigned")
LAST_UPDATED_SEQUENCE_NUMBER = NestedField.optional_field(
    LAST_UPDATED_SEQUENCE_NUMBER_ID, "_last_updated_sequence_number", LongType(),
    "Sequence number when the row was last updated")

METADATA_COLUMNS: Dict[int, NestedField] = {
    f.field_id: f for f in (FILE_PATH, ROW_POSITION, IS_DELETED, SPEC_ID, ROW_ID, LAST_UPDATED_SEQUENCE_NUMBER)
}
_BY_NAME = {f.name: f for f in METADATA_COLUMNS.values()}


def is_metadata_column(field_id: int) -> bool:
    return field_id in METADATA_COLUMNS


def metadata_column(name: str) -> NestedField:
    f = _BY_NAME.get(name)
    if f is None:
        raise ValueError(f"Unknown metadata column: {name}")
    return f


def metadata_value(field_id: int, stored: Any, constants: Optional[Mapping[int, Any]], pos: Optional[int]) -> Any:
    """
    Value of a metadata column for one row.

    A value stored in the row wins, so rows that carry their own `_row_id` or
    `_last_updated_sequence_number` keep it. Otherwise the row id is the file's first row id
    plus the row position and the other columns come from the constants.
    """
    if stored is not None:
        return stored
    if field_id == ROW_POSITION_ID:
        return pos
    if constants is None or field_id not in constants:
        return None
    if field_id == ROW_ID_ID:
        first_row_id = constants[field_id]
        if first_row_id is None or pos is None:
            return None
        return first_row_id + pos
    return constants[field_id]

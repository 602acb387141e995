"""
The schema versions of one table.

Every committed change adds a new Schema with the next schema id; earlier versions stay
loadable by id so records written under them can still be resolved. The history also tracks
the table-wide last column id, so ids of dropped columns are never handed out again.
"""
import json
import logging
from typing import Any, Dict, List, Mapping, Optional

from errors import NotFoundError
from schema import Schema
from schema_parser import schema_from_dict, schema_to_dict
from schema_update import UpdateSchema
from table_properties import TableProperties

logger = logging.getLogger(__name__)


class SchemaHistory:
    def __init__(self, schema: Schema, last_column_id: Optional[int] = None,
                 properties: Optional[Mapping[str, str]] = None):
        self._schemas: Dict[int, Schema] = {schema.schema_id: schema}
        self.current_schema_id = schema.schema_id
        self.last_column_id = max(schema.highest_field_id(), last_column_id or 0)
        self.properties = TableProperties(properties)

    @property
    def current(self) -> Schema:
        return self._schemas[self.current_schema_id]

    def schema(self, schema_id: int) -> Schema:
        """Load a schema version by id"""
        schema = self._schemas.get(schema_id)
        if schema is None:
            raise NotFoundError(str(schema_id), "Cannot find schema with id")
        return schema

    def schemas(self) -> List[Schema]:
        return [self._schemas[schema_id] for schema_id in sorted(self._schemas)]

    def add_schema(self, schema: Schema, set_current: bool = True) -> Schema:
        """Store a new schema version. Schema ids are never reused."""
        if schema.schema_id in self._schemas:
            raise ValueError(f"Schema id already exists: {schema.schema_id}")
        self._schemas[schema.schema_id] = schema
        self.last_column_id = max(self.last_column_id, schema.highest_field_id())
        if set_current:
            self.current_schema_id = schema.schema_id
        logger.info("Added schema %d (current: %d)", schema.schema_id, self.current_schema_id)
        return schema

    def update_schema(self, has_data: bool = True) -> UpdateSchema:
        return UpdateSchema(self.current, self.last_column_id, has_data, self.properties)

    def commit(self, update: UpdateSchema) -> Schema:
        """
        Apply `update` and store the result as the new current schema. Nothing is stored when
        any change in the update fails.
        """
        if update.base.schema_id != self.current_schema_id:
            raise ValueError(f"Cannot commit update based on schema {update.base.schema_id}, current schema is {self.current_schema_id}")

        new_schema = update.apply(schema_id=max(self._schemas) + 1)
        self.properties = update.properties
        self.last_column_id = max(self.last_column_id, update.last_column_id)
        if new_schema.same_schema(self.current):
            logger.info("Schema update made no changes to schema %d", self.current_schema_id)
            return self.current
        return self.add_schema(new_schema)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current-schema-id": self.current_schema_id,
            "last-column-id": self.last_column_id,
            "schemas": [schema_to_dict(schema) for schema in self.schemas()],
            "properties": dict(self.properties),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'SchemaHistory':
        schemas = [schema_from_dict(s) for s in data["schemas"]]
        if not schemas:
            raise ValueError("Schema history must contain at least one schema")
        history = SchemaHistory(schemas[0], data.get("last-column-id"), data.get("properties"))
        for schema in schemas[1:]:
            history.add_schema(schema, set_current=False)
        history.current_schema_id = history.schema(data.get("current-schema-id", schemas[-1].schema_id)).schema_id
        return history

    @staticmethod
    def from_json(text: str) -> 'SchemaHistory':
        return SchemaHistory.from_dict(json.loads(text))

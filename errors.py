"""Failures raised by the schema model, the evolution engine and the resolver.

Every error is a recoverable validation failure. Each class carries a `kind`
naming the failure and prefixes it to the message, the same way the variant
codec reports `MALFORMED_VARIANT`.
"""


class SchemaException(Exception):
    """Base exception for schema, evolution and resolution errors"""

    kind = "SCHEMA_ERROR"

    def __init__(self, message: str):
        super().__init__(f"{self.kind}: {message}")
        self.message = message


class DuplicateIdError(SchemaException):
    kind = "DUPLICATE_ID"

    def __init__(self, field_id: int, first: str, second: str):
        super().__init__(f"Multiple entries with same id: {field_id} ({first}, {second})")
        self.field_id = field_id


class DuplicateNameError(SchemaException):
    kind = "DUPLICATE_NAME"

    def __init__(self, name: str):
        super().__init__(f"Multiple entries with same name: {name}")
        self.name = name


class NameExistsError(SchemaException):
    kind = "NAME_EXISTS"

    def __init__(self, name: str):
        super().__init__(f"Cannot add column, name already exists: {name}")
        self.name = name


class NotFoundError(SchemaException):
    kind = "NOT_FOUND"

    def __init__(self, path: str, message: str = "Cannot find field"):
        super().__init__(f"{message}: {path}")
        self.path = path


class ParentNotStructError(SchemaException):
    kind = "PARENT_NOT_STRUCT"

    def __init__(self, parent: str, parent_type, action: str = "add to"):
        super().__init__(f"Cannot {action} non-struct column: {parent}: {parent_type}")
        self.parent = parent


class MapKeyImmutableError(SchemaException):
    kind = "MAP_KEY_IMMUTABLE"

    def __init__(self, action: str, path: str):
        super().__init__(f"Cannot {action} map keys: {path}")
        self.path = path


class RequiredWithoutDefaultError(SchemaException):
    kind = "REQUIRED_WITHOUT_DEFAULT"

    def __init__(self, name: str):
        super().__init__(f"Incompatible change: cannot add required column: {name}")
        self.name = name


class RequiresDefaultError(SchemaException):
    kind = "REQUIRES_DEFAULT"

    def __init__(self, name: str):
        super().__init__(f"Cannot change nullable column to non-nullable: {name}")
        self.name = name


class IncompatibleTypeError(SchemaException):
    kind = "INCOMPATIBLE_TYPE"

    def __init__(self, message: str):
        super().__init__(message)


class UnresolvableTypeError(SchemaException):
    kind = "UNRESOLVABLE_TYPE"

    def __init__(self, name: str, actual_type, expected_type):
        super().__init__(f"Cannot read {name}: {actual_type} as {expected_type}")
        self.name = name


class MissingRequiredFieldError(SchemaException):
    kind = "MISSING_REQUIRED_FIELD"

    def __init__(self, name: str, field_id: int):
        super().__init__(f"Missing required field: {name} (id {field_id})")
        self.name = name
        self.field_id = field_id


class ReservedPropertyError(SchemaException):
    kind = "RESERVED_PROPERTY"

    def __init__(self, key: str):
        super().__init__(f"Cannot specify the '{key}' because it's a reserved table property")
        self.key = key

import enum
import struct
import decimal
import uuid
from typing import Callable, List, TypeVar

# Constants for variant format
BASIC_TYPE_BITS = 2
BASIC_TYPE_MASK = 0x3
TYPE_INFO_MASK = 0x3F
MAX_SHORT_STR_SIZE = 0x3F

# Basic type values
PRIMITIVE = 0
SHORT_STR = 1
OBJECT = 2
ARRAY = 3

# Type info values for PRIMITIVE
NULL = 0
TRUE = 1
FALSE = 2
INT1 = 3
INT2 = 4
INT4 = 5
INT8 = 6
DOUBLE = 7
DECIMAL4 = 8
DECIMAL8 = 9
DECIMAL16 = 10
DATE = 11
TIMESTAMP = 12
TIMESTAMP_NTZ = 13
FLOAT = 14
BINARY = 15
LONG_STR = 16
TIME = 17
TIMESTAMP_NANOS = 18
TIMESTAMP_NTZ_NANOS = 19
UUID = 20

# Metadata header: version in the low 4 bits, sorted flag in bit 4,
# offset size minus one in the top 2 bits.
VERSION = 1
VERSION_MASK = 0x0F
SORTED_STRINGS = 0x10

# Size limits
U8_MAX = 0xFF
U16_MAX = 0xFFFF
U24_MAX = 0xFFFFFF
U24_SIZE = 3
U32_SIZE = 4

# Size limit for variant value and metadata (16MiB)
SIZE_LIMIT = U24_MAX + 1

# Decimal precision limits
MAX_DECIMAL4_PRECISION = 9
MAX_DECIMAL8_PRECISION = 18
MAX_DECIMAL16_PRECISION = 38
# Wide enough to rescale any 38 digit decimal without rounding
DECIMAL_CONTEXT = decimal.Context(prec=100)

# Fixed widths of the primitive payloads, excluding the header byte
_FIXED_PAYLOAD_SIZE = {
    NULL: 0, TRUE: 0, FALSE: 0,
    INT1: 1, INT2: 2, INT4: 4, INT8: 8,
    DOUBLE: 8, FLOAT: 4,
    DECIMAL4: 5, DECIMAL8: 9, DECIMAL16: 17,
    DATE: 4, TIME: 8,
    TIMESTAMP: 8, TIMESTAMP_NTZ: 8, TIMESTAMP_NANOS: 8, TIMESTAMP_NTZ_NANOS: 8,
    UUID: 16,
}


class Type(enum.Enum):
    """Logical type of a variant value"""
    OBJECT = 1
    ARRAY = 2
    NULL = 3
    BOOLEAN = 4
    LONG = 5
    STRING = 6
    DOUBLE = 7
    DECIMAL = 8
    DATE = 9
    TIMESTAMP = 10
    TIMESTAMP_NTZ = 11
    FLOAT = 12
    BINARY = 13
    UUID = 14
    TIME = 15
    TIMESTAMP_NANOS = 16
    TIMESTAMP_NTZ_NANOS = 17


_PRIMITIVE_TYPES = {
    NULL: Type.NULL,
    TRUE: Type.BOOLEAN,
    FALSE: Type.BOOLEAN,
    INT1: Type.LONG,
    INT2: Type.LONG,
    INT4: Type.LONG,
    INT8: Type.LONG,
    DOUBLE: Type.DOUBLE,
    DECIMAL4: Type.DECIMAL,
    DECIMAL8: Type.DECIMAL,
    DECIMAL16: Type.DECIMAL,
    DATE: Type.DATE,
    TIMESTAMP: Type.TIMESTAMP,
    TIMESTAMP_NTZ: Type.TIMESTAMP_NTZ,
    FLOAT: Type.FLOAT,
    BINARY: Type.BINARY,
    LONG_STR: Type.STRING,
    TIME: Type.TIME,
    TIMESTAMP_NANOS: Type.TIMESTAMP_NANOS,
    TIMESTAMP_NTZ_NANOS: Type.TIMESTAMP_NTZ_NANOS,
    UUID: Type.UUID,
}

# Primitive tags whose payload is a little-endian signed integer of the given width
_INTEGRAL_WIDTHS = {
    INT1: 1, INT2: 2, INT4: 4, INT8: 8,
    DATE: 4, TIME: 8,
    TIMESTAMP: 8, TIMESTAMP_NTZ: 8, TIMESTAMP_NANOS: 8, TIMESTAMP_NTZ_NANOS: 8,
}


class VariantException(Exception):
    """Base exception for variant-related errors"""
    pass

class MalformedVariantException(VariantException):
    """Exception for malformed variant data"""
    def __init__(self):
        super().__init__("MALFORMED_VARIANT")

class VariantConstructorSizeLimitException(VariantException):
    """Exception for variant size limit exceeded"""
    def __init__(self):
        super().__init__("VARIANT_CONSTRUCTOR_SIZE_LIMIT")

class UnknownPrimitiveTypeException(VariantException):
    """Exception for unknown primitive type"""
    def __init__(self, type_id):
        super().__init__(f"UNKNOWN_PRIMITIVE_TYPE_IN_VARIANT: {type_id}")

def malformed_variant():
    """Create a malformed variant exception"""
    return MalformedVariantException()

def variant_constructor_size_limit():
    """Create a size limit exception"""
    return VariantConstructorSizeLimitException()

def unknown_primitive_type_in_variant(type_id):
    """Create an unknown primitive type exception"""
    return UnknownPrimitiveTypeException(type_id)

T = TypeVar('T')

class VariantUtil:
    """Low level readers and writers for the variant binary encoding"""

    @staticmethod
    def write_long(bytes_array: bytearray, pos: int, value: int, num_bytes: int) -> None:
        """Write the least significant `num_bytes` bytes in `value` into `bytes_array[pos:pos+num_bytes]` in little endian."""
        for i in range(num_bytes):
            bytes_array[pos + i] = (value >> (8 * i)) & 0xFF

    @staticmethod
    def primitive_header(type_val: int) -> int:
        """Create a primitive header byte"""
        return (type_val << 2) | PRIMITIVE

    @staticmethod
    def short_str_header(size: int) -> int:
        """Create a short string header byte"""
        return (size << 2) | SHORT_STR

    @staticmethod
    def object_header(large_size: bool, id_size: int, offset_size: int) -> int:
        """Create an object header byte"""
        return (((1 if large_size else 0) << (BASIC_TYPE_BITS + 4)) |
                ((id_size - 1) << (BASIC_TYPE_BITS + 2)) |
                ((offset_size - 1) << BASIC_TYPE_BITS) | OBJECT)

    @staticmethod
    def array_header(large_size: bool, offset_size: int) -> int:
        """Create an array header byte"""
        return (((1 if large_size else 0) << (BASIC_TYPE_BITS + 2)) |
                ((offset_size - 1) << BASIC_TYPE_BITS) | ARRAY)

    @staticmethod
    def metadata_header(sorted_strings: bool, offset_size: int) -> int:
        """Create a metadata header byte"""
        return VERSION | (SORTED_STRINGS if sorted_strings else 0) | ((offset_size - 1) << 6)

    @staticmethod
    def check_index(pos: int, length: int) -> None:
        """Check if an index is valid"""
        if pos < 0 or pos >= length:
            raise malformed_variant()

    @staticmethod
    def read_long(bytes_array: bytes, pos: int, num_bytes: int) -> int:
        """Read a little-endian signed long value"""
        VariantUtil.check_index(pos, len(bytes_array))
        VariantUtil.check_index(pos + num_bytes - 1, len(bytes_array))
        return int.from_bytes(bytes_array[pos:pos + num_bytes], byteorder='little', signed=True)

    @staticmethod
    def read_unsigned(bytes_array: bytes, pos: int, num_bytes: int) -> int:
        """Read a little-endian unsigned int value"""
        VariantUtil.check_index(pos, len(bytes_array))
        VariantUtil.check_index(pos + num_bytes - 1, len(bytes_array))
        return int.from_bytes(bytes_array[pos:pos + num_bytes], byteorder='little', signed=False)

    @staticmethod
    def basic_type(value: bytes, pos: int) -> int:
        VariantUtil.check_index(pos, len(value))
        return value[pos] & BASIC_TYPE_MASK

    @staticmethod
    def get_type_info(value: bytes, pos: int) -> int:
        """Get the type info bits from a variant value"""
        VariantUtil.check_index(pos, len(value))
        return (value[pos] >> BASIC_TYPE_BITS) & TYPE_INFO_MASK

    @staticmethod
    def get_type(value: bytes, pos: int) -> Type:
        """Get the value type of variant value"""
        basic_type = VariantUtil.basic_type(value, pos)
        type_info = VariantUtil.get_type_info(value, pos)

        if basic_type == SHORT_STR:
            return Type.STRING
        elif basic_type == OBJECT:
            return Type.OBJECT
        elif basic_type == ARRAY:
            return Type.ARRAY

        variant_type = _PRIMITIVE_TYPES.get(type_info)
        if variant_type is None:
            raise unknown_primitive_type_in_variant(type_info)
        return variant_type

    @staticmethod
    def value_size(value: bytes, pos: int) -> int:
        """Compute the size in bytes of the variant value"""
        basic_type = VariantUtil.basic_type(value, pos)
        type_info = VariantUtil.get_type_info(value, pos)

        if basic_type == SHORT_STR:
            return 1 + type_info
        elif basic_type == OBJECT:
            return VariantUtil.handle_object(
                value, pos,
                lambda size, id_size, offset_size, id_start, offset_start, data_start:
                    data_start - pos + VariantUtil.read_unsigned(
                        value, offset_start + size * offset_size, offset_size
                    )
            )
        elif basic_type == ARRAY:
            return VariantUtil.handle_array(
                value, pos,
                lambda size, offset_size, offset_start, data_start:
                    data_start - pos + VariantUtil.read_unsigned(
                        value, offset_start + size * offset_size, offset_size
                    )
            )
        elif type_info in (BINARY, LONG_STR):
            return 1 + U32_SIZE + VariantUtil.read_unsigned(value, pos + 1, U32_SIZE)
        elif type_info in _FIXED_PAYLOAD_SIZE:
            return 1 + _FIXED_PAYLOAD_SIZE[type_info]
        else:
            raise unknown_primitive_type_in_variant(type_info)

    @staticmethod
    def unexpected_type(expected_type: Type) -> Exception:
        """Create an exception for unexpected type"""
        return ValueError(f"Expected type to be {expected_type}")

    @staticmethod
    def _primitive_info(value: bytes, pos: int, expected_type: Type) -> int:
        if VariantUtil.basic_type(value, pos) != PRIMITIVE:
            raise VariantUtil.unexpected_type(expected_type)
        return VariantUtil.get_type_info(value, pos)

    @staticmethod
    def get_boolean(value: bytes, pos: int) -> bool:
        """Get a boolean value from variant value"""
        type_info = VariantUtil._primitive_info(value, pos, Type.BOOLEAN)
        if type_info != TRUE and type_info != FALSE:
            raise VariantUtil.unexpected_type(Type.BOOLEAN)
        return type_info == TRUE

    @staticmethod
    def get_long(value: bytes, pos: int) -> int:
        """
        Get an integral value from variant value. Dates are days since epoch, times are
        microseconds since midnight and timestamps are micro- or nanoseconds since epoch.
        """
        type_info = VariantUtil._primitive_info(value, pos, Type.LONG)
        width = _INTEGRAL_WIDTHS.get(type_info)
        if width is None:
            raise ValueError("Expected type to be LONG/DATE/TIME/TIMESTAMP/TIMESTAMP_NTZ")
        return VariantUtil.read_long(value, pos + 1, width)

    @staticmethod
    def get_double(value: bytes, pos: int) -> float:
        """Get a double value from variant value"""
        if VariantUtil._primitive_info(value, pos, Type.DOUBLE) != DOUBLE:
            raise VariantUtil.unexpected_type(Type.DOUBLE)
        VariantUtil.check_index(pos + 8, len(value))
        return struct.unpack('<d', value[pos + 1:pos + 9])[0]

    @staticmethod
    def check_decimal(unscaled: int, scale: int, max_precision: int) -> None:
        """Check whether the precision and scale of the decimal are within the limit"""
        if scale > max_precision or len(str(abs(unscaled))) > max_precision:
            raise malformed_variant()

    @staticmethod
    def get_decimal_with_original_scale(value: bytes, pos: int) -> decimal.Decimal:
        """Get a decimal value from variant value with original scale"""
        type_info = VariantUtil._primitive_info(value, pos, Type.DECIMAL)
        VariantUtil.check_index(pos + 1, len(value))

        # Interpret the scale byte as unsigned
        scale = value[pos + 1] & 0xFF

        if type_info == DECIMAL4:
            unscaled = VariantUtil.read_long(value, pos + 2, 4)
            VariantUtil.check_decimal(unscaled, scale, MAX_DECIMAL4_PRECISION)
        elif type_info == DECIMAL8:
            unscaled = VariantUtil.read_long(value, pos + 2, 8)
            VariantUtil.check_decimal(unscaled, scale, MAX_DECIMAL8_PRECISION)
        elif type_info == DECIMAL16:
            unscaled = VariantUtil.read_long(value, pos + 2, 16)
            VariantUtil.check_decimal(unscaled, scale, MAX_DECIMAL16_PRECISION)
        else:
            raise VariantUtil.unexpected_type(Type.DECIMAL)

        return decimal.Decimal(unscaled).scaleb(-scale, DECIMAL_CONTEXT)

    @staticmethod
    def get_decimal(value: bytes, pos: int) -> decimal.Decimal:
        """Get a decimal value from variant value with trailing zeros stripped"""
        return VariantUtil.get_decimal_with_original_scale(value, pos).normalize()

    @staticmethod
    def get_float(value: bytes, pos: int) -> float:
        """Get a float value from variant value"""
        if VariantUtil._primitive_info(value, pos, Type.FLOAT) != FLOAT:
            raise VariantUtil.unexpected_type(Type.FLOAT)
        VariantUtil.check_index(pos + 4, len(value))
        return struct.unpack('<f', value[pos + 1:pos + 5])[0]

    @staticmethod
    def get_binary(value: bytes, pos: int) -> bytes:
        """Get a binary value from variant value"""
        if VariantUtil._primitive_info(value, pos, Type.BINARY) != BINARY:
            raise VariantUtil.unexpected_type(Type.BINARY)

        start = pos + 1 + U32_SIZE
        length = VariantUtil.read_unsigned(value, pos + 1, U32_SIZE)
        if length > 0:
            VariantUtil.check_index(start + length - 1, len(value))
        return bytes(value[start:start + length])

    @staticmethod
    def get_string(value: bytes, pos: int) -> str:
        """Get a string value from variant value"""
        basic_type = VariantUtil.basic_type(value, pos)
        type_info = VariantUtil.get_type_info(value, pos)

        if basic_type == SHORT_STR:
            start = pos + 1
            length = type_info
        elif basic_type == PRIMITIVE and type_info == LONG_STR:
            start = pos + 1 + U32_SIZE
            length = VariantUtil.read_unsigned(value, pos + 1, U32_SIZE)
        else:
            raise VariantUtil.unexpected_type(Type.STRING)

        if length > 0:
            VariantUtil.check_index(start + length - 1, len(value))
        return bytes(value[start:start + length]).decode('utf-8')

    @staticmethod
    def get_uuid(value: bytes, pos: int) -> uuid.UUID:
        """Get a UUID value from variant value"""
        if VariantUtil._primitive_info(value, pos, Type.UUID) != UUID:
            raise VariantUtil.unexpected_type(Type.UUID)

        start = pos + 1
        VariantUtil.check_index(start + 15, len(value))

        # UUID values are big-endian
        return uuid.UUID(bytes=bytes(value[start:start + 16]))

    @staticmethod
    def handle_object(value: bytes, pos: int, handler: Callable[[int, int, int, int, int, int], T]) -> T:
        """Helper function to access a variant object"""
        if VariantUtil.basic_type(value, pos) != OBJECT:
            raise VariantUtil.unexpected_type(Type.OBJECT)
        type_info = VariantUtil.get_type_info(value, pos)

        # Extract header information
        large_size = ((type_info >> 4) & 0x1) != 0
        size_bytes = U32_SIZE if large_size else 1
        size = VariantUtil.read_unsigned(value, pos + 1, size_bytes)

        id_size = ((type_info >> 2) & 0x3) + 1
        offset_size = (type_info & 0x3) + 1

        id_start = pos + 1 + size_bytes
        offset_start = id_start + size * id_size
        data_start = offset_start + (size + 1) * offset_size

        return handler(size, id_size, offset_size, id_start, offset_start, data_start)

    @staticmethod
    def handle_array(value: bytes, pos: int, handler: Callable[[int, int, int, int], T]) -> T:
        """Helper function to access a variant array"""
        if VariantUtil.basic_type(value, pos) != ARRAY:
            raise VariantUtil.unexpected_type(Type.ARRAY)
        type_info = VariantUtil.get_type_info(value, pos)

        # Extract header information
        large_size = ((type_info >> 2) & 0x1) != 0
        size_bytes = U32_SIZE if large_size else 1
        size = VariantUtil.read_unsigned(value, pos + 1, size_bytes)

        offset_size = (type_info & 0x3) + 1

        offset_start = pos + 1 + size_bytes
        data_start = offset_start + (size + 1) * offset_size

        return handler(size, offset_size, offset_start, data_start)

    @staticmethod
    def metadata_offset_size(metadata: bytes) -> int:
        VariantUtil.check_index(0, len(metadata))
        return ((metadata[0] >> 6) & 0x3) + 1

    @staticmethod
    def is_sorted_metadata(metadata: bytes) -> bool:
        """Whether the metadata dictionary is flagged as sorted and unique"""
        VariantUtil.check_index(0, len(metadata))
        return (metadata[0] & SORTED_STRINGS) != 0

    @staticmethod
    def get_dictionary_size(metadata: bytes) -> int:
        """Get the number of strings in the metadata dictionary"""
        return VariantUtil.read_unsigned(metadata, 1, VariantUtil.metadata_offset_size(metadata))

    @staticmethod
    def get_metadata_key(metadata: bytes, id_val: int) -> str:
        """Get a key at `id` in the variant metadata"""
        offset_size = VariantUtil.metadata_offset_size(metadata)
        dict_size = VariantUtil.read_unsigned(metadata, 1, offset_size)

        if id_val < 0 or id_val >= dict_size:
            raise malformed_variant()

        # Calculate offsets
        string_start = 1 + (dict_size + 2) * offset_size
        offset = VariantUtil.read_unsigned(metadata, 1 + (id_val + 1) * offset_size, offset_size)
        next_offset = VariantUtil.read_unsigned(metadata, 1 + (id_val + 2) * offset_size, offset_size)

        if offset > next_offset:
            raise malformed_variant()

        if next_offset > offset:
            VariantUtil.check_index(string_start + next_offset - 1, len(metadata))

        return bytes(metadata[string_start + offset:string_start + next_offset]).decode('utf-8')

    @staticmethod
    def get_metadata_keys(metadata: bytes) -> List[str]:
        """Get every key of the metadata dictionary in id order"""
        return [VariantUtil.get_metadata_key(metadata, i)
                for i in range(VariantUtil.get_dictionary_size(metadata))]

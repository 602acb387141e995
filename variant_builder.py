import json
import decimal
import datetime
import uuid
import struct
from typing import List, Dict, Any
from dataclasses import dataclass

from variant_util import (
    VariantUtil, OBJECT, ARRAY, NULL, TRUE, FALSE, INT1, INT2, INT4, INT8,
    DOUBLE, DECIMAL4, DECIMAL8, DECIMAL16, DATE, TIMESTAMP, TIMESTAMP_NTZ, FLOAT,
    BINARY, LONG_STR, TIME, TIMESTAMP_NANOS, TIMESTAMP_NTZ_NANOS, UUID,
    U8_MAX, U16_MAX, U24_MAX, U24_SIZE, U32_SIZE, MAX_SHORT_STR_SIZE, SIZE_LIMIT,
    MAX_DECIMAL4_PRECISION, MAX_DECIMAL8_PRECISION, MAX_DECIMAL16_PRECISION,
)

from variant import Variant, EPOCH, EPOCH_DAY

class VariantSizeLimitException(Exception):
    """Exception for variant size limit exceeded during building"""
    def __init__(self):
        super().__init__("VARIANT_SIZE_LIMIT")

class VariantDuplicateKeyException(Exception):
    """Exception for duplicate keys in variant object"""
    def __init__(self, key: str):
        super().__init__(f"VARIANT_DUPLICATE_KEY: {key}")

_INT_RANGES = (
    (INT1, 1, -(1 << 7), 1 << 7),
    (INT2, 2, -(1 << 15), 1 << 15),
    (INT4, 4, -(1 << 31), 1 << 31),
)


class VariantBuilder:
    """
    Build variant value and metadata from JSON or python values.

    Keys get dictionary ids in the order they are first seen. With `sort_keys`, `result()`
    re-encodes the value against a sorted dictionary and flags the metadata as sorted.
    """

    def __init__(self, allow_duplicate_keys: bool = False, sort_keys: bool = False):
        self.allow_duplicate_keys = allow_duplicate_keys
        self.sort_keys = sort_keys
        self.write_buffer = bytearray(128)
        self.write_pos = 0
        self.dictionary: Dict[str, int] = {}  # Map keys to monotonically increasing id
        self.dictionary_keys: List[str] = []  # Store all keys in dictionary in order of id

    @staticmethod
    def parse_json(json_str: str, allow_duplicate_keys: bool = False, sort_keys: bool = False) -> Variant:
        """Parse a JSON string as a Variant value. Fractional numbers become decimals where they fit."""
        builder = VariantBuilder(allow_duplicate_keys, sort_keys)
        builder.build_json(json.loads(json_str, parse_float=decimal.Decimal))
        return builder.result()

    @staticmethod
    def from_python(obj: Any, sort_keys: bool = False) -> Variant:
        """Encode a python value (dicts, lists, scalars, dates and times) as a Variant"""
        builder = VariantBuilder(sort_keys=sort_keys)
        builder.build_value(obj)
        return builder.result()

    @staticmethod
    def _build_metadata(keys: List[str], sorted_strings: bool) -> bytes:
        encoded = [key.encode('utf-8') for key in keys]
        num_keys = len(encoded)
        dictionary_string_size = sum(len(key) for key in encoded)

        # Determine bytes required per offset entry
        max_size = max(dictionary_string_size, num_keys)
        if max_size > SIZE_LIMIT:
            raise VariantSizeLimitException()

        offset_size = VariantBuilder._get_integer_size(max_size)

        offset_start = 1 + offset_size
        string_start = offset_start + (num_keys + 1) * offset_size
        metadata_size = string_start + dictionary_string_size

        if metadata_size > SIZE_LIMIT:
            raise VariantSizeLimitException()

        metadata = bytearray(metadata_size)
        metadata[0] = VariantUtil.metadata_header(sorted_strings, offset_size)
        VariantUtil.write_long(metadata, 1, num_keys, offset_size)

        current_offset = 0
        for i, key_bytes in enumerate(encoded):
            VariantUtil.write_long(metadata, offset_start + i * offset_size, current_offset, offset_size)
            metadata[string_start + current_offset:string_start + current_offset + len(key_bytes)] = key_bytes
            current_offset += len(key_bytes)

        VariantUtil.write_long(metadata, offset_start + num_keys * offset_size, current_offset, offset_size)
        return bytes(metadata)

    def result(self) -> Variant:
        """Build the variant metadata from dictionary_keys and return the variant result"""
        if not self.sort_keys:
            return Variant(self.value_without_metadata(), self._build_metadata(self.dictionary_keys, False))

        sorted_keys = sorted(self.dictionary_keys)
        if sorted_keys == self.dictionary_keys:
            return Variant(self.value_without_metadata(), self._build_metadata(sorted_keys, True))

        # Re-encode so that object field ids point into the sorted dictionary
        unsorted_metadata = self._build_metadata(self.dictionary_keys, False)
        rebuilt = VariantBuilder(self.allow_duplicate_keys)
        for key in sorted_keys:
            rebuilt.add_key(key)
        rebuilt._append_variant_impl(self.value_without_metadata(), unsorted_metadata, 0)
        return Variant(rebuilt.value_without_metadata(), self._build_metadata(sorted_keys, True))

    def value_without_metadata(self) -> bytes:
        """Return the variant value only, without metadata"""
        return bytes(self.write_buffer[:self.write_pos])

    def _write_header(self, header: int) -> None:
        self.write_buffer[self.write_pos] = header
        self.write_pos += 1

    def _write_int(self, value: int, num_bytes: int) -> None:
        VariantUtil.write_long(self.write_buffer, self.write_pos, value, num_bytes)
        self.write_pos += num_bytes

    def _write_bytes(self, data: bytes) -> None:
        self.write_buffer[self.write_pos:self.write_pos + len(data)] = data
        self.write_pos += len(data)

    def append_string(self, s: str) -> None:
        """Append a string value to the variant builder"""
        text = s.encode('utf-8')
        long_str = len(text) > MAX_SHORT_STR_SIZE

        self._check_capacity((1 + U32_SIZE if long_str else 1) + len(text))

        if long_str:
            self._write_header(VariantUtil.primitive_header(LONG_STR))
            self._write_int(len(text), U32_SIZE)
        else:
            self._write_header(VariantUtil.short_str_header(len(text)))

        self._write_bytes(text)

    def append_null(self) -> None:
        """Append a null value to the variant builder"""
        self._check_capacity(1)
        self._write_header(VariantUtil.primitive_header(NULL))

    def append_boolean(self, b: bool) -> None:
        """Append a boolean value to the variant builder"""
        self._check_capacity(1)
        self._write_header(VariantUtil.primitive_header(TRUE if b else FALSE))

    def append_long(self, l: int) -> None:
        """Append an integer using the smallest of the INT1/INT2/INT4/INT8 encodings"""
        self._check_capacity(1 + 8)

        for type_val, num_bytes, low, high in _INT_RANGES:
            if low <= l < high:
                self._write_header(VariantUtil.primitive_header(type_val))
                self._write_int(l, num_bytes)
                return

        if not -(1 << 63) <= l < (1 << 63):
            raise ValueError(f"Integer out of range for variant: {l}")
        self._write_header(VariantUtil.primitive_header(INT8))
        self._write_int(l, 8)

    def append_double(self, d: float) -> None:
        """Append a double value to the variant builder"""
        self._check_capacity(1 + 8)
        self._write_header(VariantUtil.primitive_header(DOUBLE))
        self._write_bytes(struct.pack('<d', d))

    def append_decimal(self, d: decimal.Decimal) -> None:
        """Append a decimal value using the narrowest decimal encoding that holds it"""
        self._check_capacity(2 + 16)

        sign, digits, exp = d.as_tuple()
        if not isinstance(exp, int):
            raise ValueError(f"Cannot encode non-finite decimal: {d}")
        if exp > 0:
            # Variant decimals have a non-negative scale
            digits = digits + (0,) * exp
            exp = 0
        scale = -exp
        unscaled = int(''.join(map(str, digits)) or '0')
        if sign:
            unscaled = -unscaled
        precision = max(len(digits), scale)

        if precision <= MAX_DECIMAL4_PRECISION:
            type_val, num_bytes = DECIMAL4, 4
        elif precision <= MAX_DECIMAL8_PRECISION:
            type_val, num_bytes = DECIMAL8, 8
        elif precision <= MAX_DECIMAL16_PRECISION:
            type_val, num_bytes = DECIMAL16, 16
        else:
            raise ValueError(f"Decimal precision exceeds {MAX_DECIMAL16_PRECISION}: {d}")

        self._write_header(VariantUtil.primitive_header(type_val))
        self._write_int(scale, 1)
        self._write_int(unscaled, num_bytes)

    def _append_integral(self, type_val: int, value: int, num_bytes: int) -> None:
        self._check_capacity(1 + num_bytes)
        self._write_header(VariantUtil.primitive_header(type_val))
        self._write_int(value, num_bytes)

    def append_date(self, days_since_epoch: int) -> None:
        """Append a date value to the variant builder"""
        self._append_integral(DATE, days_since_epoch, 4)

    def append_time(self, micros_since_midnight: int) -> None:
        """Append a time of day without zone to the variant builder"""
        self._append_integral(TIME, micros_since_midnight, 8)

    def append_timestamp(self, micros_since_epoch: int) -> None:
        """Append a UTC-adjusted timestamp value to the variant builder"""
        self._append_integral(TIMESTAMP, micros_since_epoch, 8)

    def append_timestamp_ntz(self, micros_since_epoch: int) -> None:
        """Append a timestamp_ntz value to the variant builder"""
        self._append_integral(TIMESTAMP_NTZ, micros_since_epoch, 8)

    def append_timestamp_nanos(self, nanos_since_epoch: int) -> None:
        self._append_integral(TIMESTAMP_NANOS, nanos_since_epoch, 8)

    def append_timestamp_ntz_nanos(self, nanos_since_epoch: int) -> None:
        self._append_integral(TIMESTAMP_NTZ_NANOS, nanos_since_epoch, 8)

    def append_float(self, f: float) -> None:
        """Append a float value to the variant builder"""
        self._check_capacity(1 + 4)
        self._write_header(VariantUtil.primitive_header(FLOAT))
        self._write_bytes(struct.pack('<f', f))

    def append_binary(self, binary: bytes) -> None:
        """Append a binary value to the variant builder"""
        self._check_capacity(1 + U32_SIZE + len(binary))
        self._write_header(VariantUtil.primitive_header(BINARY))
        self._write_int(len(binary), U32_SIZE)
        self._write_bytes(binary)

    def append_uuid(self, uuid_val: uuid.UUID) -> None:
        """Append a UUID value to the variant builder"""
        self._check_capacity(1 + 16)
        self._write_header(VariantUtil.primitive_header(UUID))
        # UUID is stored big-endian
        self._write_bytes(uuid_val.bytes)

    def add_key(self, key: str) -> int:
        """Add a key to the variant dictionary"""
        if key in self.dictionary:
            return self.dictionary[key]
        id_val = len(self.dictionary_keys)
        self.dictionary[key] = id_val
        self.dictionary_keys.append(key)
        return id_val

    def get_write_pos(self) -> int:
        """Return the current write position of the variant builder"""
        return self.write_pos

    @dataclass
    class FieldEntry:
        """Store information about a field in an object"""
        key: str
        id: int
        offset: int

        def with_new_offset(self, new_offset: int) -> 'VariantBuilder.FieldEntry':
            return VariantBuilder.FieldEntry(self.key, self.id, new_offset)

    def _dedupe_fields(self, start: int, fields: List[FieldEntry]) -> List[FieldEntry]:
        # Keep the last written value for each key and compact the data
        last_by_key: Dict[str, VariantBuilder.FieldEntry] = {}
        for field in fields:
            current = last_by_key.get(field.key)
            if current is None or field.offset > current.offset:
                last_by_key[field.key] = field

        if len(last_by_key) == len(fields):
            return fields

        distinct = sorted(last_by_key.values(), key=lambda f: f.offset)
        current_offset = 0
        compacted = []
        for field in distinct:
            old_offset = field.offset
            field_size = VariantUtil.value_size(self.write_buffer, start + old_offset)
            if current_offset != old_offset:
                self.write_buffer[start + current_offset:start + current_offset + field_size] = \
                    self.write_buffer[start + old_offset:start + old_offset + field_size]
            compacted.append(field.with_new_offset(current_offset))
            current_offset += field_size

        self.write_pos = start + current_offset
        return sorted(compacted, key=lambda f: f.key)

    def _shift_for_header(self, start: int, header_size: int) -> int:
        data_size = self.write_pos - start
        self._check_capacity(header_size)
        self.write_buffer[start + header_size:start + header_size + data_size] = \
            self.write_buffer[start:start + data_size]
        self.write_pos += header_size
        return data_size

    def finish_writing_object(self, start: int, fields: List[FieldEntry]) -> None:
        """Finish writing a variant object after all fields have been written"""
        fields = sorted(fields, key=lambda f: f.key)

        if self.allow_duplicate_keys:
            fields = self._dedupe_fields(start, fields)
        else:
            for i in range(1, len(fields)):
                if fields[i].key == fields[i - 1].key:
                    raise VariantDuplicateKeyException(fields[i].key)

        size = len(fields)
        max_id = max((f.id for f in fields), default=0)
        data_size = self.write_pos - start
        large_size = size > U8_MAX
        size_bytes = U32_SIZE if large_size else 1
        id_size = self._get_integer_size(max_id)
        offset_size = self._get_integer_size(data_size)

        # Space for header byte, object size, id list, and offset list
        header_size = 1 + size_bytes + size * id_size + (size + 1) * offset_size
        self._shift_for_header(start, header_size)

        self.write_buffer[start] = VariantUtil.object_header(large_size, id_size, offset_size)
        VariantUtil.write_long(self.write_buffer, start + 1, size, size_bytes)

        id_start = start + 1 + size_bytes
        offset_start = id_start + size * id_size

        for i, field in enumerate(fields):
            VariantUtil.write_long(self.write_buffer, id_start + i * id_size, field.id, id_size)
            VariantUtil.write_long(self.write_buffer, offset_start + i * offset_size, field.offset, offset_size)

        # The total data size is the last offset
        VariantUtil.write_long(self.write_buffer, offset_start + size * offset_size, data_size, offset_size)

    def finish_writing_array(self, start: int, offsets: List[int]) -> None:
        """Finish writing a variant array after all elements have been written"""
        size = len(offsets)
        data_size = self.write_pos - start

        large_size = size > U8_MAX
        size_bytes = U32_SIZE if large_size else 1
        offset_size = self._get_integer_size(data_size)

        # Space for header byte, array size, and offset list
        header_size = 1 + size_bytes + (size + 1) * offset_size
        self._shift_for_header(start, header_size)

        self.write_buffer[start] = VariantUtil.array_header(large_size, offset_size)
        VariantUtil.write_long(self.write_buffer, start + 1, size, size_bytes)

        offset_start = start + 1 + size_bytes
        for i, offset in enumerate(offsets):
            VariantUtil.write_long(self.write_buffer, offset_start + i * offset_size, offset, offset_size)

        VariantUtil.write_long(self.write_buffer, offset_start + size * offset_size, data_size, offset_size)

    def append_variant(self, v: Variant) -> None:
        """Append a variant value, re-keying its objects into this builder's dictionary"""
        self._append_variant_impl(v.value, v.metadata, v.pos)

    def _append_variant_impl(self, value: bytes, metadata: bytes, pos: int) -> None:
        basic_type = VariantUtil.basic_type(value, pos)

        if basic_type == OBJECT:
            VariantUtil.handle_object(
                value, pos,
                lambda size, id_size, offset_size, id_start, offset_start, data_start:
                    self._append_object(
                        value, metadata, size, id_size, offset_size, id_start,
                        offset_start, data_start
                    )
            )
        elif basic_type == ARRAY:
            VariantUtil.handle_array(
                value, pos,
                lambda size, offset_size, offset_start, data_start:
                    self._append_array(
                        value, metadata, size, offset_size, offset_start, data_start
                    )
            )
        else:
            self._shallow_append_variant_impl(value, pos)

    def _append_object(self, value, metadata, size, id_size, offset_size, id_start, offset_start, data_start):
        fields = []
        start = self.write_pos

        for i in range(size):
            id_val = VariantUtil.read_unsigned(value, id_start + id_size * i, id_size)
            offset = VariantUtil.read_unsigned(value, offset_start + offset_size * i, offset_size)

            key = VariantUtil.get_metadata_key(metadata, id_val)
            fields.append(self.FieldEntry(key, self.add_key(key), self.write_pos - start))
            self._append_variant_impl(value, metadata, data_start + offset)

        self.finish_writing_object(start, fields)

    def _append_array(self, value, metadata, size, offset_size, offset_start, data_start):
        offsets = []
        start = self.write_pos

        for i in range(size):
            offset = VariantUtil.read_unsigned(value, offset_start + offset_size * i, offset_size)
            offsets.append(self.write_pos - start)
            self._append_variant_impl(value, metadata, data_start + offset)

        self.finish_writing_array(start, offsets)

    def shallow_append_variant(self, v: Variant) -> None:
        """Append variant without rewriting or creating metadata"""
        self._shallow_append_variant_impl(v.value, v.pos)

    def _shallow_append_variant_impl(self, value: bytes, pos: int) -> None:
        size = VariantUtil.value_size(value, pos)
        VariantUtil.check_index(pos + size - 1, len(value))

        self._check_capacity(size)
        self._write_bytes(value[pos:pos + size])

    def _check_capacity(self, additional: int) -> None:
        """Ensure the write buffer has enough capacity"""
        required = self.write_pos + additional

        if required > len(self.write_buffer):
            # Allocate a new buffer with capacity of next power of 2
            new_capacity = 1
            while new_capacity < required:
                new_capacity *= 2

            if new_capacity > SIZE_LIMIT:
                raise VariantSizeLimitException()

            new_buffer = bytearray(new_capacity)
            new_buffer[:self.write_pos] = self.write_buffer[:self.write_pos]
            self.write_buffer = new_buffer

    @staticmethod
    def _get_integer_size(value: int) -> int:
        """Choose the smallest unsigned integer type that can store `value`"""
        assert 0 <= value <= U24_MAX

        if value <= U8_MAX:
            return 1
        elif value <= U16_MAX:
            return 2
        else:
            return U24_SIZE

    def _build_object(self, items, build) -> None:
        fields = []
        start = self.write_pos
        for key, value in items:
            fields.append(self.FieldEntry(key, self.add_key(key), self.write_pos - start))
            build(value)
        self.finish_writing_object(start, fields)

    def _build_array(self, elements, build) -> None:
        offsets = []
        start = self.write_pos
        for element in elements:
            offsets.append(self.write_pos - start)
            build(element)
        self.finish_writing_array(start, offsets)

    def build_json(self, json_data: Any) -> None:
        """Build a variant from a parsed JSON document"""
        if isinstance(json_data, dict):
            self._build_object(json_data.items(), self.build_json)
        elif isinstance(json_data, list):
            self._build_array(json_data, self.build_json)
        elif isinstance(json_data, str):
            self.append_string(json_data)
        elif isinstance(json_data, bool):
            self.append_boolean(json_data)
        elif isinstance(json_data, decimal.Decimal):
            # Prefer an exact decimal; fall back to double when out of decimal range
            sign, digits, exp = json_data.as_tuple()
            if isinstance(exp, int) and -MAX_DECIMAL16_PRECISION <= exp <= 0 \
                    and len(digits) <= MAX_DECIMAL16_PRECISION:
                self.append_decimal(json_data)
            else:
                self.append_double(float(json_data))
        elif isinstance(json_data, float):
            self.append_double(json_data)
        elif isinstance(json_data, int):
            self.append_long(json_data)
        elif json_data is None:
            self.append_null()
        else:
            raise ValueError(f"Unsupported JSON type: {type(json_data)}")

    def build_value(self, obj: Any) -> None:
        """Build a variant from python values, including dates, times, UUIDs and bytes"""
        if isinstance(obj, Variant):
            self.append_variant(obj)
        elif isinstance(obj, dict):
            self._build_object(obj.items(), self.build_value)
        elif isinstance(obj, (list, tuple)):
            self._build_array(obj, self.build_value)
        elif isinstance(obj, datetime.datetime):
            if obj.tzinfo is None:
                delta = obj - EPOCH.replace(tzinfo=None)
                self.append_timestamp_ntz(delta // datetime.timedelta(microseconds=1))
            else:
                delta = obj - EPOCH
                self.append_timestamp(delta // datetime.timedelta(microseconds=1))
        elif isinstance(obj, datetime.date):
            self.append_date((obj - EPOCH_DAY).days)
        elif isinstance(obj, datetime.time):
            self.append_time(((obj.hour * 60 + obj.minute) * 60 + obj.second) * 1_000_000 + obj.microsecond)
        elif isinstance(obj, uuid.UUID):
            self.append_uuid(obj)
        elif isinstance(obj, (bytes, bytearray)):
            self.append_binary(bytes(obj))
        else:
            self.build_json(obj)

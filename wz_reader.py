"""
WZ archive decoder - byte cursor

Positioned, bounds-checked reads over an immutable buffer (bytes, mmap or
memoryview), plus the archive's variable-length integers, the two string
cipher branches, string-block indirection and directory offset decryption.

The cursor is shared mutable state: one cursor per thread.

Copyright (c) 2025 @hejhdiss(Muhammed Shafin P)
All rights reserved.
Licensed under GPLv3.
"""
import struct
from typing import Union

from wz_errors import MalformedData, OutOfRange
from wz_keys import KeyStream

_I8 = struct.Struct("<b")
_U8 = struct.Struct("<B")
_I16 = struct.Struct("<h")
_U16 = struct.Struct("<H")
_I32 = struct.Struct("<i")
_U32 = struct.Struct("<I")
_I64 = struct.Struct("<q")
_U64 = struct.Struct("<Q")
_F32 = struct.Struct("<f")
_F64 = struct.Struct("<d")

# String-block tags
STRING_INLINE = (0x00, 0x73)
STRING_OFFSET = (0x01, 0x1B)

IMAGE_TAG = 0x73
IMAGE_CLASS = "Property"

OFFSET_CONSTANT = 0x581C3F6D

WIDE_MASK = 0xAAAA
NARROW_MASK = 0xAA


def _rotl32(value: int, shift: int) -> int:
    shift &= 0x1F
    value &= 0xFFFFFFFF
    return ((value << shift) | (value >> (32 - shift))) & 0xFFFFFFFF


class ByteCursor:
    """Reads little-endian primitives and encrypted strings from a buffer."""

    def __init__(self, buffer: Union[bytes, bytearray, memoryview], key: KeyStream):
        self._buf = buffer
        self._size = len(buffer)
        self.key = key
        self.cursor = 0

    # --- Cursor bookkeeping ---

    @property
    def size(self) -> int:
        return self._size

    @property
    def buffer(self):
        return self._buf

    def get_position(self) -> int:
        return self.cursor

    def set_position(self, position: int):
        if position < 0 or position > self._size:
            raise OutOfRange(f"Position {position} outside buffer of {self._size} bytes.")
        self.cursor = position

    def skip(self, count: int):
        self.set_position(self.cursor + count)

    def remaining(self) -> int:
        return self._size - self.cursor

    def _require(self, count: int):
        if count < 0 or self.cursor + count > self._size:
            raise OutOfRange(
                f"Read of {count} bytes at {self.cursor} runs past end of buffer ({self._size} bytes)."
            )

    # --- Fixed-width reads ---

    def read_fixed(self, fmt: struct.Struct):
        """Reads one value described by a single-field struct and advances."""
        self._require(fmt.size)
        value = fmt.unpack_from(self._buf, self.cursor)[0]
        self.cursor += fmt.size
        return value

    def read_i8(self) -> int: return self.read_fixed(_I8)
    def read_u8(self) -> int: return self.read_fixed(_U8)
    def read_i16(self) -> int: return self.read_fixed(_I16)
    def read_u16(self) -> int: return self.read_fixed(_U16)
    def read_i32(self) -> int: return self.read_fixed(_I32)
    def read_u32(self) -> int: return self.read_fixed(_U32)
    def read_i64(self) -> int: return self.read_fixed(_I64)
    def read_u64(self) -> int: return self.read_fixed(_U64)
    def read_f32(self) -> float: return self.read_fixed(_F32)
    def read_f64(self) -> float: return self.read_fixed(_F64)

    read_byte = read_u8

    def read_bytes(self, count: int) -> bytes:
        self._require(count)
        data = bytes(self._buf[self.cursor:self.cursor + count])
        self.cursor += count
        return data

    # --- Plain strings ---

    def read_ascii_string(self, length: int = None) -> str:
        """Zero-terminated string, or exactly `length` bytes when given.

        Each byte becomes one character.
        """
        if length is not None:
            return self.read_bytes(length).decode("latin-1")

        chars = []
        while True:
            c = self.read_u8()
            if c == 0:
                break
            chars.append(c)
        return bytes(chars).decode("latin-1")

    def read_compressed_int(self) -> int:
        """One signed byte, or -128 followed by a signed 32-bit value."""
        value = self.read_i8()
        if value == -128:
            return self.read_i32()
        return value

    # --- Encrypted strings ---

    def read_cipher_string(self) -> str:
        len8 = self.read_i8()
        if len8 == 0:
            return ""

        if len8 > 0:
            length = self.read_i32() if len8 == 127 else len8
            if length <= 0:
                return ""
            self._require(2 * length)
            units = struct.unpack_from(f"<{length}H", self._buf, self.cursor)
            self.cursor += 2 * length
            keys = self.key[0:2 * length]
            mask = WIDE_MASK
            plain = bytearray()
            for i, unit in enumerate(units):
                ks = keys[2 * i] | (keys[2 * i + 1] << 8)
                plain += _U16.pack(unit ^ mask ^ ks)
                mask = (mask + 1) & 0xFFFF
            return plain.decode("utf-16-le", errors="surrogatepass")

        length = self.read_i32() if len8 == -128 else -len8
        if length <= 0:
            return ""
        raw = self.read_bytes(length)
        keys = self.key[0:length]
        mask = NARROW_MASK
        plain = bytearray(length)
        for i, b in enumerate(raw):
            plain[i] = b ^ mask ^ keys[i]
            mask = (mask + 1) & 0xFF
        return plain.decode("latin-1")

    def read_cipher_string_at(self, offset: int) -> str:
        """Decodes a cipher string at `offset`, leaving the cursor where it was."""
        prev = self.cursor
        self.set_position(offset)
        try:
            return self.read_cipher_string()
        finally:
            self.cursor = prev

    def read_string_block(self, base_offset: int) -> str:
        tag = self.read_u8()
        if tag in STRING_INLINE:
            return self.read_cipher_string()
        if tag in STRING_OFFSET:
            delta = self.read_u32()
            return self.read_cipher_string_at(base_offset + delta)
        raise MalformedData(f"Unknown string-block tag 0x{tag:02X} at offset {self.cursor - 1}.")

    def is_image_probe(self) -> bool:
        """Consumes tag, class name and reserved u16; True for an image header.

        Callers that need to re-read the region must restore the cursor.
        """
        if self.read_u8() != IMAGE_TAG:
            return False
        if self.read_cipher_string() != IMAGE_CLASS:
            return False
        return self.read_u16() == 0

    # --- Directory offsets ---

    def read_offset(self, data_start: int, version_hash: int) -> int:
        """Decrypts a 4-byte directory entry offset."""
        offset = ((self.cursor - data_start) ^ 0xFFFFFFFF) & 0xFFFFFFFF
        offset = (offset * version_hash) & 0xFFFFFFFF
        offset = (offset - OFFSET_CONSTANT) & 0xFFFFFFFF
        offset = _rotl32(offset, offset & 0x1F)
        encrypted = self.read_u32()
        offset ^= encrypted
        return (offset + data_start * 2) & 0xFFFFFFFF

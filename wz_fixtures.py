"""
WZ archive decoder - test fixture encoder

Builds cipher strings, property lists and whole archives in memory so the
decoder tests do not need real game files.

Copyright (c) 2025 @hejhdiss(Muhammed Shafin P)
All rights reserved.
Licensed under GPLv3.
"""
import struct
from typing import Dict, List, Optional, Union

from wz_keys import KeyStream, get_version_hash, version_check_byte
from wz_reader import OFFSET_CONSTANT, _rotl32

COPYRIGHT = "Package file v1.0 Copyright 2002 Wizet, ZMS"
ZLIB_MAGIC = b"\x78\x9c"


def u8(v): return struct.pack("<B", v)
def u16(v): return struct.pack("<H", v)
def i32(v): return struct.pack("<i", v)
def u32(v): return struct.pack("<I", v)
def u64(v): return struct.pack("<Q", v)
def f32(v): return struct.pack("<f", v)
def f64(v): return struct.pack("<d", v)


def compressed_int(value: int) -> bytes:
    if -127 <= value <= 127:
        return struct.pack("<b", value)
    return b"\x80" + i32(value)


def cipher_string(text: str, key: KeyStream, wide: Optional[bool] = None) -> bytes:
    """Encrypts `text`; narrow (8-bit) unless it needs 16-bit units or `wide`."""
    if not text:
        return b"\x00"
    if wide is None:
        wide = any(ord(c) > 0xFF for c in text)

    if wide:
        raw = text.encode("utf-16-le", errors="surrogatepass")
        units = struct.unpack(f"<{len(raw) // 2}H", raw)
        n = len(units)
        out = bytearray(b"\x7f" + i32(n) if n >= 127 else struct.pack("<b", n))
        mask = 0xAAAA
        for i, unit in enumerate(units):
            out += u16(unit ^ mask ^ key.u16(2 * i))
            mask = (mask + 1) & 0xFFFF
        return bytes(out)

    raw = text.encode("latin-1")
    n = len(raw)
    out = bytearray(b"\x80" + i32(n) if n >= 128 else struct.pack("<b", -n))
    mask = 0xAA
    for i, b in enumerate(raw):
        out.append(b ^ mask ^ key[i])
        mask = (mask + 1) & 0xFF
    return bytes(out)


def inline(text: str, key: KeyStream, tag: int = 0x00) -> bytes:
    """String-block stored in place."""
    return u8(tag) + cipher_string(text, key)


def reference(delta: int, tag: int = 0x01) -> bytes:
    """String-block pointing `delta` bytes past the block's base offset."""
    return u8(tag) + u32(delta)


# --- Property lists ---

def prop_list(entries: List[bytes]) -> bytes:
    return compressed_int(len(entries)) + b"".join(entries)


def entry(name: Union[str, bytes], tag: int, payload: bytes, key: KeyStream) -> bytes:
    name_block = name if isinstance(name, bytes) else inline(name, key)
    return name_block + u8(tag) + payload


def null_entry(name, key): return entry(name, 0x00, b"", key)
def ushort_entry(name, value, key): return entry(name, 0x02, u16(value), key)
def int_entry(name, value, key): return entry(name, 0x03, compressed_int(value), key)
def float_entry(name, value, key): return entry(name, 0x04, b"\x80" + f32(value), key)
def double_entry(name, value, key): return entry(name, 0x05, f64(value), key)
def string_entry(name, value, key): return entry(name, 0x08, inline(value, key), key)


def extended_entry(name, body: bytes, key: KeyStream, declared: Optional[int] = None) -> bytes:
    length = len(body) if declared is None else declared
    return entry(name, 0x09, u32(length) + body, key)


def ext_property(entries: List[bytes], key: KeyStream) -> bytes:
    return inline("Property", key, 0x73) + b"\x00\x00" + prop_list(entries)


def ext_vector(x: int, y: int, key: KeyStream) -> bytes:
    return inline("Shape2D#Vector2D", key, 0x73) + compressed_int(x) + compressed_int(y)


def ext_convex(points, key: KeyStream) -> bytes:
    body = b"".join(ext_vector(x, y, key) for x, y in points)
    return inline("Shape2D#Convex2D", key, 0x73) + compressed_int(len(points)) + body


def ext_uol(target: str, key: KeyStream) -> bytes:
    return inline("UOL", key, 0x73) + b"\x00" + inline(target, key)


def ext_canvas(width, height, fmt, fmt2, payload: bytes, key: KeyStream,
               entries: Optional[List[bytes]] = None) -> bytes:
    out = inline("Canvas", key, 0x73) + b"\x00"
    if entries is not None:
        out += b"\x01\x00\x00" + prop_list(entries)
    else:
        out += b"\x00"
    out += compressed_int(width) + compressed_int(height) + compressed_int(fmt) + u8(fmt2)
    out += bytes(4) + i32(len(payload) + 1) + b"\x00" + payload
    return out


def ext_sound(payload: bytes, length: int, frequency: int, key: KeyStream) -> bytes:
    out = inline("Sound_DX8", key, 0x73) + b"\x00"
    out += compressed_int(len(payload)) + compressed_int(length)
    out += bytes(56) + i32(frequency) + bytes(22) + payload
    return out


def image_blob(entries: List[bytes], key: KeyStream) -> bytes:
    return b"\x73" + cipher_string("Property", key) + b"\x00\x00" + prop_list(entries)


# --- Whole archives ---

def encrypt_offset(position: int, data_start: int, version_hash: int, target: int) -> bytes:
    o = ((position - data_start) ^ 0xFFFFFFFF) & 0xFFFFFFFF
    o = (o * version_hash) & 0xFFFFFFFF
    o = (o - OFFSET_CONSTANT) & 0xFFFFFFFF
    o = _rotl32(o, o & 0x1F)
    return u32(o ^ ((target - data_start * 2) & 0xFFFFFFFF))


def build_archive(tree: Dict[str, Union[dict, bytes]], key: KeyStream, version: int = 83,
                  copyright: str = COPYRIGHT) -> bytes:
    """Encodes a directory tree; dict values are directories, bytes are image blobs."""
    header = b"PKG1"
    data_start = len(header) + 8 + 4 + len(copyright) + 1
    version_hash = get_version_hash(version)

    tables = []

    def collect(d):
        tables.append(d)
        for value in d.values():
            if isinstance(value, dict):
                collect(value)

    collect(tree)

    def table_len(d):
        n = len(compressed_int(len(d)))
        for name, value in d.items():
            size = len(value) if isinstance(value, bytes) else 0
            n += 1 + len(cipher_string(name, key)) + len(compressed_int(size)) + 1 + 4
        return n

    positions = {}
    pos = data_start + 2
    for t in tables:
        positions[id(t)] = pos
        pos += table_len(t)

    image_positions = []
    for t in tables:
        for value in t.values():
            if isinstance(value, bytes):
                image_positions.append(pos)
                pos += len(value)

    body = bytearray(u16(version_check_byte(version_hash)))
    images = []
    image_iter = iter(image_positions)
    for t in tables:
        table = bytearray(compressed_int(len(t)))
        for name, value in t.items():
            if isinstance(value, dict):
                table += u8(3) + cipher_string(name, key) + compressed_int(0) + compressed_int(0)
                target = positions[id(value)]
            else:
                table += u8(4) + cipher_string(name, key) + compressed_int(len(value)) + compressed_int(0)
                target = next(image_iter)
                images.append(value)
            field_pos = positions[id(t)] + len(table)
            table += encrypt_offset(field_pos, data_start, version_hash, target)
        body += table
    for blob in images:
        body += blob

    header += u64(len(body)) + u32(data_start) + copyright.encode("latin-1") + b"\x00"
    return bytes(header + body)

"""
WZ archive decoder - property list parser

Recursive-descent decoding of property lists. Every entry is a string-block
name, a 1-byte type tag and a tag-specific payload; tag 0x09 wraps an
"extended" record whose class name selects the layout (sub-property,
canvas, vector, convex polygon, sound, link). Canvas and sound payloads
are located but not decoded.

Copyright (c) 2025 @hejhdiss(Muhammed Shafin P)
All rights reserved.
Licensed under GPLv3.
"""
import sys
from dataclasses import dataclass
from typing import List, Optional

from wz_errors import MalformedData, OutOfRange
from wz_node import Canvas, Kind, Node, Sound, UOL, Vec2D
from wz_reader import ByteCursor

MAX_DEPTH = 64  # nested property lists / convex chains

# Property type tags
TAG_NULL = 0x00
TAG_USHORT = (0x02, 0x0B)
TAG_INT = 0x03
TAG_FLOAT = 0x04
TAG_DOUBLE = 0x05
TAG_STRING = 0x08
TAG_EXTENDED = 0x09

FLOAT_PRESENT = 0x80
FLOAT_ZERO = 0x00

ZLIB_HEADERS = (0x9C78, 0xDA78)

# format + format2 -> bytes per pixel rule
CANVAS_SIZES = {
    1: lambda w, h: w * h * 2,      # 4444
    2: lambda w, h: w * h * 4,      # 8888
    513: lambda w, h: w * h * 2,    # 565
    517: lambda w, h: w * h // 128,  # 16x16 blocks of one 565 colour
}

SOUND_HEADER_SKIP = 56
SOUND_TRAILER_SKIP = 22


@dataclass(frozen=True)
class ParseWarning:
    path: str
    message: str

    def __str__(self):
        return f"{self.path}: {self.message}"


class PropertyListParser:
    """Fills Node subtrees from a ByteCursor."""

    def __init__(self, reader: ByteCursor, max_depth: int = MAX_DEPTH, quiet: bool = False):
        self.reader = reader
        self.max_depth = max_depth
        self.quiet = quiet
        self.warnings: List[ParseWarning] = []

    def _warn(self, path: str, message: str):
        warning = ParseWarning(path, message)
        self.warnings.append(warning)
        if not self.quiet:
            print(f"Warning: {warning}", file=sys.stderr)

    def _check_depth(self, depth: int, path: str):
        if depth > self.max_depth:
            raise MalformedData(f"Nesting deeper than {self.max_depth} levels at {path!r}.")

    # --- Property lists ---

    def parse_property_list(self, target: Node, base_offset: int, depth: int = 0):
        self._check_depth(depth, target.path)
        r = self.reader
        count = r.read_compressed_int()

        for _ in range(count):
            name = r.read_string_block(base_offset)
            tag = r.read_u8()

            if tag == TAG_NULL:
                target.append_child(name, Node(Kind.NULL))
            elif tag in TAG_USHORT:
                target.append_child(name, Node(Kind.UNSIGNED_SHORT, value=r.read_u16()))
            elif tag == TAG_INT:
                target.append_child(name, Node(Kind.INT, value=r.read_compressed_int()))
            elif tag == TAG_FLOAT:
                sub = r.read_u8()
                if sub == FLOAT_PRESENT:
                    target.append_child(name, Node(Kind.FLOAT, value=r.read_f32()))
                elif sub == FLOAT_ZERO:
                    target.append_child(name, Node(Kind.FLOAT, value=0.0))
                else:
                    self._warn(f"{target.path}/{name}", f"unknown float sub-tag 0x{sub:02X}, entry dropped")
            elif tag == TAG_DOUBLE:
                target.append_child(name, Node(Kind.DOUBLE, value=r.read_f64()))
            elif tag == TAG_STRING:
                target.append_child(name, Node(Kind.STRING, value=r.read_string_block(base_offset)))
            elif tag == TAG_EXTENDED:
                length = r.read_u32()
                end = r.get_position() + length
                self.parse_extended(name, target, base_offset, depth + 1)
                if r.get_position() != end:
                    r.set_position(end)
            else:
                raise MalformedData(
                    f"Unknown property tag 0x{tag:02X} for {target.path}/{name} at offset {r.get_position() - 1}."
                )

    def parse_extended(self, name: str, target: Node, base_offset: int, depth: int = 0):
        path = f"{target.path}/{name}"
        self._check_depth(depth, path)
        r = self.reader
        class_name = r.read_string_block(base_offset)

        if class_name == "Property":
            r.skip(2)
            prop = target.append_child(name, Node(Kind.SUB_PROPERTY))
            self.parse_property_list(prop, base_offset, depth + 1)

        elif class_name == "Canvas":
            prop = target.append_child(name, Node(Kind.CANVAS))
            r.skip(1)
            if r.read_u8() == 1:
                r.skip(2)
                self.parse_property_list(prop, base_offset, depth + 1)
            prop.set_value(self.parse_canvas(prop.path))

        elif class_name == "Shape2D#Vector2D":
            x = r.read_compressed_int()
            y = r.read_compressed_int()
            target.append_child(name, Node(Kind.VECTOR2D, value=Vec2D(x, y)))

        elif class_name == "Shape2D#Convex2D":
            prop = target.append_child(name, Node(Kind.CONVEX2D))
            count = r.read_compressed_int()
            for _ in range(count):
                self.parse_extended(name, prop, base_offset, depth + 1)

        elif class_name == "Sound_DX8":
            target.append_child(name, Node(Kind.SOUND, value=self.parse_sound()))

        elif class_name == "UOL":
            r.skip(1)
            target.append_child(name, Node(Kind.UOL, value=UOL(r.read_string_block(base_offset))))

        else:
            raise MalformedData(f"Unsupported extended class {class_name!r} at {path!r}.")

    # --- Fixed-layout headers ---

    def _check_span(self, offset: int, size: int, what: str):
        if size < 0 or offset + size > self.reader.size:
            raise OutOfRange(
                f"{what} data span [{offset}, {offset + size}) outside buffer of {self.reader.size} bytes."
            )

    def parse_canvas(self, path: str = "") -> Canvas:
        r = self.reader
        width = r.read_compressed_int()
        height = r.read_compressed_int()
        fmt = r.read_compressed_int()
        fmt2 = r.read_u8()
        r.skip(4)
        size = r.read_i32() - 1
        r.skip(1)
        offset = r.get_position()
        self._check_span(offset, size, "Canvas")

        is_encrypted = False
        if size >= 2:
            is_encrypted = r.read_u16() not in ZLIB_HEADERS

        rule = CANVAS_SIZES.get(fmt + fmt2)
        uncompressed_size: Optional[int] = None
        if rule is not None:
            uncompressed_size = rule(width, height)
        else:
            self._warn(path, f"unknown canvas format {fmt}+{fmt2}, uncompressed size unset")

        r.set_position(offset + size)
        return Canvas(width, height, fmt, fmt2, size, offset, is_encrypted, uncompressed_size)

    def parse_sound(self) -> Sound:
        r = self.reader
        r.skip(1)
        size = r.read_compressed_int()
        length = r.read_compressed_int()
        r.skip(SOUND_HEADER_SKIP)
        frequency = r.read_i32()
        r.skip(SOUND_TRAILER_SKIP)
        offset = r.get_position()
        self._check_span(offset, size, "Sound")
        r.set_position(offset + size)
        return Sound(size, length, frequency, offset)

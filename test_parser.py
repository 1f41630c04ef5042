#!/usr/bin/env python3
"""
test_parser.py
Checks property-list decoding: scalar tags, nested sub-properties, the
extended classes (canvas, vector, convex, sound, link), the end-of-span
resync for extended entries, warnings for unknown sub-formats and the
recursion bound.

Copyright (c) 2025 @hejhdiss(Muhammed Shafin P)
All rights reserved.
Licensed under GPLv3.
"""
import sys

from wz_errors import MalformedData, OutOfRange, WrongKind
from wz_fixtures import (
    ZLIB_MAGIC, double_entry, entry, ext_canvas, ext_convex, ext_property, ext_sound, ext_uol,
    ext_vector, extended_entry, float_entry, inline, int_entry, null_entry, prop_list, reference,
    string_entry, u16, ushort_entry,
)
from wz_keys import IV_BMS, KeyStream
from wz_node import Kind, Node
from wz_parser import PropertyListParser
from wz_reader import ByteCursor

KEY = KeyStream(IV_BMS)


def parse(data: bytes, start: int = 0, base: int = 0, max_depth: int = 64):
    reader = ByteCursor(data, KEY)
    reader.set_position(start)
    parser = PropertyListParser(reader, max_depth=max_depth, quiet=True)
    root = Node(Kind.IMAGE, "test.img")
    parser.parse_property_list(root, base)
    return root, parser, reader


def expect(exc_type, fn, *args, **kwargs):
    try:
        fn(*args, **kwargs)
    except exc_type:
        return
    raise AssertionError(f"{fn.__name__} did not raise {exc_type.__name__}")


# --- Test Cases ---

def test_scalar_properties():
    data = prop_list([
        null_entry("nothing", KEY),
        ushort_entry("delay", 120, KEY),
        entry("alt", 0x0B, u16(7), KEY),
        int_entry("hp", 50000, KEY),
        int_entry("small", -3, KEY),
        float_entry("speed", 1.5, KEY),
        entry("zero", 0x04, b"\x00", KEY),
        double_entry("ratio", 0.125, KEY),
        string_entry("bgm", "Bgm00/GoPicnic", KEY),
    ])
    root, parser, reader = parse(data)
    assert reader.get_position() == len(data)
    assert root.get_child("nothing").kind == Kind.NULL
    assert root.get_child("nothing").as_null() is None
    assert root.get_child("delay").as_ushort() == 120
    assert root.get_child("alt").as_ushort() == 7
    assert root.get_child("hp").as_int() == 50000
    assert root.get_child("small").as_int() == -3
    assert root.get_child("speed").as_float() == 1.5
    assert root.get_child("zero").as_float() == 0.0
    assert root.get_child("ratio").as_double() == 0.125
    assert root.get_child("bgm").as_string() == "Bgm00/GoPicnic"
    assert root.get_child("bgm").path == "test.img/bgm"
    assert [name for name, _ in root] == [
        "nothing", "delay", "alt", "hp", "small", "speed", "zero", "ratio", "bgm"]
    assert not parser.warnings


def test_unknown_float_subtag_warns_and_drops_entry():
    data = prop_list([entry("odd", 0x04, b"\x01", KEY), int_entry("after", 9, KEY)])
    root, parser, reader = parse(data)
    assert root.get_child("odd") is None
    assert root.get_child("after").as_int() == 9
    assert len(parser.warnings) == 1
    assert parser.warnings[0].path == "test.img/odd"
    assert "0x01" in parser.warnings[0].message


def test_unknown_property_tag_raises():
    data = prop_list([entry("bad", 0x07, b"", KEY)])
    expect(MalformedData, parse, data)


def test_same_named_siblings_keep_order():
    data = prop_list([int_entry("x", 1, KEY), int_entry("x", 2, KEY), int_entry("y", 3, KEY)])
    root, _, _ = parse(data)
    assert root.get_child("x").as_int() == 1
    assert [n.as_int() for n in root.get_children("x")] == [1, 2]
    assert root.children_count() == 3
    assert [name for name, _ in root] == ["x", "y"]
    assert bool(Node(Kind.SUB_PROPERTY))


def test_nested_sub_properties():
    inner = ext_property([int_entry("x", -20, KEY), int_entry("y", 40, KEY)], KEY)
    outer = ext_property([extended_entry("origin", inner, KEY), string_entry("name", "snail", KEY)], KEY)
    data = prop_list([extended_entry("info", outer, KEY)])
    root, _, reader = parse(data)
    info = root.get_child("info")
    assert info.kind == Kind.SUB_PROPERTY
    assert info.is_property
    origin = info.get_child("origin")
    assert origin.path == "test.img/info/origin"
    assert origin.get_child("x").as_int() == -20
    assert origin.parent is info
    assert info.get_child("name").as_string() == "snail"
    assert reader.get_position() == len(data)


def test_vector_and_convex():
    data = prop_list([
        extended_entry("lt", ext_vector(-30, -60, KEY), KEY),
        extended_entry("foothold", ext_convex([(0, 0), (10, 5), (20, 0)], KEY), KEY),
    ])
    root, _, _ = parse(data)
    lt = root.get_child("lt").as_vector()
    assert (lt.x, lt.y) == (-30, -60)
    convex = root.get_child("foothold")
    assert convex.kind == Kind.CONVEX2D
    points = [(p.as_vector().x, p.as_vector().y) for p in convex.as_convex()]
    assert points == [(0, 0), (10, 5), (20, 0)]
    # every point carries the convex node's own name
    assert list(convex.children) == ["foothold"]
    same_named = convex.get_children("foothold")
    assert [(p.as_vector().x, p.as_vector().y) for p in same_named] == points
    assert convex.get_child("foothold").path == "test.img/foothold/foothold"


def test_uol_is_stored_unresolved():
    data = prop_list([extended_entry("stand", ext_uol("../move/0", KEY), KEY)])
    root, _, _ = parse(data)
    link = root.get_child("stand")
    assert link.kind == Kind.UOL
    assert link.as_uol().target == "../move/0"


def test_canvas_uncompressed_sizes():
    payload = ZLIB_MAGIC + b"\x01\x02\x03"
    cases = [((1, 0), 12), ((2, 0), 24), ((513, 0), 12), ((1, 0x02), None)]
    for (fmt, fmt2), expected in cases:
        data = prop_list([extended_entry("0", ext_canvas(2, 3, fmt, fmt2, payload, KEY), KEY)])
        root, parser, _ = parse(data)
        canvas = root.get_child("0").as_canvas()
        assert (canvas.width, canvas.height) == (2, 3)
        assert canvas.uncompressed_size == expected
        assert bool(parser.warnings) == (expected is None)

    data = prop_list([extended_entry("0", ext_canvas(128, 4, 517, 0, payload, KEY), KEY)])
    root, _, _ = parse(data)
    assert root.get_child("0").as_canvas().uncompressed_size == 4


def test_canvas_payload_span_and_encryption_flag():
    payload = ZLIB_MAGIC + bytes(30)
    body = ext_canvas(16, 16, 2, 0, payload, KEY)
    data = prop_list([extended_entry("icon", body, KEY), int_entry("after", 1, KEY)])
    root, _, _ = parse(data)
    canvas = root.get_child("icon").as_canvas()
    assert canvas.size == len(payload)
    assert data[canvas.offset:canvas.offset + canvas.size] == payload
    assert not canvas.is_encrypted
    assert root.get_child("after").as_int() == 1

    data = prop_list([extended_entry("icon", ext_canvas(16, 16, 2, 0, b"\x12\x34" + bytes(8), KEY), KEY)])
    root, _, _ = parse(data)
    assert root.get_child("icon").as_canvas().is_encrypted


def test_empty_canvas_payload_at_end_of_buffer():
    data = prop_list([extended_entry("0", ext_canvas(1, 1, 1, 0, b"", KEY), KEY)])
    root, _, reader = parse(data)
    canvas = root.get_child("0").as_canvas()
    assert canvas.size == 0
    assert canvas.offset == len(data)
    assert not canvas.is_encrypted
    assert reader.get_position() == len(data)


def test_canvas_with_property_list():
    props = [extended_entry("origin", ext_vector(12, 30, KEY), KEY), int_entry("z", 3, KEY)]
    body = ext_canvas(4, 4, 2, 0, ZLIB_MAGIC + bytes(4), KEY, entries=props)
    root, _, _ = parse(prop_list([extended_entry("0", body, KEY)]))
    canvas = root.get_child("0")
    assert canvas.kind == Kind.CANVAS
    assert canvas.get_child("origin").as_vector().y == 30
    assert canvas.get_child("z").as_int() == 3
    assert canvas.as_canvas().uncompressed_size == 64


def test_canvas_span_outside_buffer_raises():
    body = ext_canvas(4, 4, 2, 0, ZLIB_MAGIC + bytes(40), KEY)
    data = prop_list([extended_entry("0", body, KEY)])
    expect(OutOfRange, parse, data[:-10])


def test_sound_header():
    payload = b"RIFF" + bytes(20)
    data = prop_list([extended_entry("Attack", ext_sound(payload, 1250, 44100, KEY), KEY),
                      int_entry("after", 2, KEY)])
    root, _, _ = parse(data)
    sound = root.get_child("Attack").as_sound()
    assert sound.size == len(payload)
    assert sound.length == 1250
    assert sound.frequency == 44100
    assert data[sound.offset:sound.offset + sound.size] == payload
    assert root.get_child("after").as_int() == 2


def test_extended_entry_resyncs_to_declared_end():
    body = ext_vector(1, 2, KEY)
    padded = body + b"\xEE" * 7
    data = prop_list([
        extended_entry("v", padded, KEY),
        int_entry("next", 77, KEY),
    ])
    root, _, reader = parse(data)
    assert root.get_child("v").as_vector().x == 1
    assert root.get_child("next").as_int() == 77
    assert reader.get_position() == len(data)

    # declared span shorter than what the sub-parser consumed
    short = extended_entry("v", body, KEY, declared=len(body) - 1)
    data = prop_list([short])
    _, _, reader = parse(data + b"\x00")
    assert reader.get_position() == len(data) - 1


def test_unknown_extended_class_raises():
    body = inline("Shape2D#Cube", KEY, 0x73)
    expect(MalformedData, parse, prop_list([extended_entry("x", body, KEY)]))


def test_string_blocks_relative_to_base_offset():
    prefix = b"\xAA" * 3
    base = len(prefix)
    names = inline("shared", KEY)
    list_start = base + len(names)
    data = prefix + names + prop_list([
        entry(reference(1), 0x03, b"\x05", KEY),
        entry(reference(1), 0x08, reference(1), KEY),
    ])
    root, _, reader = parse(data, start=list_start, base=base)
    values = root.get_children("shared")
    assert values[0].as_int() == 5
    assert values[1].as_string() == "shared"
    assert reader.get_position() == len(data)


def test_recursion_depth_is_bounded():
    body = ext_property([int_entry("leaf", 1, KEY)], KEY)
    for _ in range(10):
        body = ext_property([extended_entry("p", body, KEY)], KEY)
    data = prop_list([extended_entry("p", body, KEY)])
    expect(MalformedData, parse, data, max_depth=8)
    root, _, _ = parse(data, max_depth=64)
    assert root.get_child("p").get_child("p") is not None


def test_typed_accessor_rejects_other_kinds():
    root, _, _ = parse(prop_list([int_entry("hp", 1, KEY)]))
    expect(WrongKind, root.get_child("hp").as_string)
    expect(WrongKind, root.get_child("hp").as_canvas)


# --- Main Execution ---

if __name__ == "__main__":
    tests = [(name, fn) for name, fn in list(globals().items()) if name.startswith("test_") and callable(fn)]
    failed = 0
    for name, fn in tests:
        try:
            fn()
            print(f"✅ {name}")
        except Exception as e:
            failed += 1
            print(f"❌ {name}: {type(e).__name__}: {e}")
    print(f"\n{len(tests) - failed}/{len(tests)} parser tests passed.")
    sys.exit(1 if failed else 0)

#!/usr/bin/env python3
"""
wzx - inspect WZ game-resource archives

Copyright (c) 2025 @hejhdiss(Muhammed Shafin P)
All rights reserved.
Licensed under GPLv3.
"""
import argparse
import sys

from wz_archive import Archive
from wz_errors import WzError
from wz_keys import KNOWN_IVS
from wz_node import Kind, Node


def format_value(node: Node) -> str:
    kind = node.kind
    if kind == Kind.NULL:
        return "null"
    if kind in (Kind.INT, Kind.UNSIGNED_SHORT):
        return str(node.value)
    if kind in (Kind.FLOAT, Kind.DOUBLE):
        return repr(node.value)
    if kind == Kind.STRING:
        return repr(node.value)
    if kind == Kind.VECTOR2D:
        v = node.as_vector()
        return f"({v.x}, {v.y})"
    if kind == Kind.CONVEX2D:
        points = [f"({p.value.x}, {p.value.y})" for p in node.as_convex() if p.kind == Kind.VECTOR2D]
        return "[" + ", ".join(points) + "]"
    if kind == Kind.UOL:
        return f"-> {node.as_uol().target}"
    if kind == Kind.CANVAS:
        c = node.as_canvas()
        raw = "unknown" if c.uncompressed_size is None else str(c.uncompressed_size)
        return (f"{c.width}x{c.height} format={c.format}+{c.format2} stored={c.size} "
                f"raw={raw} offset={c.offset}{' encrypted' if c.is_encrypted else ''}")
    if kind == Kind.SOUND:
        s = node.as_sound()
        return f"size={s.size} length={s.length} frequency={s.frequency} offset={s.offset}"
    if kind in (Kind.DIRECTORY, Kind.IMAGE) and node.value is not None:
        info = node.entry_info()
        return f"size={info.size} checksum={info.checksum} offset={info.offset}"
    return ""


def dump(node: Node, depth: int, indent: int = 0, out=sys.stdout):
    for name, nodes in node:
        for child in nodes:
            value = format_value(child)
            line = f"{'  ' * indent}{name} [{child.kind.value}]"
            print(f"{line} {value}" if value else line, file=out)
            if depth > 1:
                dump(child, depth - 1, indent + 1, out)


def _resolve_iv(args) -> bytes:
    if args.iv_hex:
        iv = bytes.fromhex(args.iv_hex)
        if len(iv) != 4:
            raise ValueError(f"--iv-hex must be 4 bytes (8 hex digits), got {len(iv)}.")
        return iv
    return KNOWN_IVS[args.iv]


def main(argv=None):
    ap = argparse.ArgumentParser(description="Inspect WZ game-resource archives.")
    ap.add_argument("--iv", choices=sorted(KNOWN_IVS), default="ems", help="Well-known string key IV (default: ems).")
    ap.add_argument("--iv-hex", default=None, help="Explicit 4-byte IV as 8 hex digits (overrides --iv).")
    ap.add_argument("--version", dest="game_version", type=int, default=None,
                    help="Game version; detected from the header when omitted.")
    ap.add_argument("--verbose", action="store_true", help="Print header/version/image progress to stderr.")

    subparsers = ap.add_subparsers(dest="cmd")

    p = subparsers.add_parser("ls", help="List the children of a node.")
    p.add_argument("file", help="Input .wz archive.")
    p.add_argument("path", nargs="?", default="", help="Slash path inside the archive (default: root).")

    p = subparsers.add_parser("get", help="Print the value of one node.")
    p.add_argument("file", help="Input .wz archive.")
    p.add_argument("path", help="Slash path inside the archive.")

    p = subparsers.add_parser("dump", help="Recursively list a subtree.")
    p.add_argument("file", help="Input .wz archive.")
    p.add_argument("path", nargs="?", default="", help="Slash path inside the archive (default: root).")
    p.add_argument("--depth", type=int, default=8, help="Levels to descend (default: 8).")

    p = subparsers.add_parser("version", help="Print the detected game version.")
    p.add_argument("file", help="Input .wz archive.")

    args = ap.parse_args(argv)
    if not args.cmd:
        ap.print_help(sys.stderr)
        return 1

    try:
        with Archive(args.file, iv=_resolve_iv(args), version=args.game_version, verbose=args.verbose) as archive:
            if args.cmd == "version":
                print(f"version={archive.version} hash=0x{archive.version_hash:08X} "
                      f"tag={archive.encrypted_version}")
            elif args.cmd == "ls":
                node = archive.get(args.path)
                for name, nodes in node:
                    for child in nodes:
                        print(f"{name}\t{child.kind.value}")
            elif args.cmd == "get":
                node = archive.get(args.path)
                print(f"{node.path} [{node.kind.value}] {format_value(node)}".rstrip())
            elif args.cmd == "dump":
                dump(archive.get(args.path), args.depth)
    except (WzError, ValueError, FileNotFoundError) as e:
        print(f"\nFATAL WZX {args.cmd.upper()} ERROR: {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

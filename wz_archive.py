"""
WZ archive decoder - archive, directory table and path resolution

An Archive memory-maps a .wz file, reads the PKG1 header, finds the game
version whose hash decrypts the directory table, and enumerates the
directory tree. Images (.img entries) stay unparsed until a path walks
through them; they are then parsed in place and remembered in a per-archive
cache keyed by full path.

An Archive and its cursor are not thread-safe. Use one Archive per thread,
or hold a lock around every resolve/parse call.

Copyright (c) 2025 @hejhdiss(Muhammed Shafin P)
All rights reserved.
Licensed under GPLv3.
"""
import mmap
import os
import sys
from typing import Dict, Optional

from wz_errors import InvalidPath, MalformedData, NodeNotFound, OutOfRange, WrongKind, WzError
from wz_keys import IV_EMS, KeyStream, verify_version
from wz_node import EntryInfo, Kind, Node
from wz_parser import MAX_DEPTH, PropertyListParser
from wz_reader import ByteCursor

# === Format identifiers ===
MAGIC = b"PKG1"

# Directory entry types
ENTRY_SKIP = 1
ENTRY_REDIRECT = 2
ENTRY_DIRECTORY = 3
ENTRY_IMAGE = 4

MAX_UOL_HOPS = 16
MAX_VERSION_SCAN = 512


class Archive:
    """A decoded .wz archive.

    Either `path` (memory-mapped) or `data` (any bytes-like object) supplies
    the bytes. `version` pins the game version; when omitted it is detected.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        iv: bytes = IV_EMS,
        version: Optional[int] = None,
        data: Optional[bytes] = None,
        name: Optional[str] = None,
        verbose: bool = False,
        quiet: bool = False,
        max_depth: int = MAX_DEPTH,
    ):
        if (path is None) == (data is None):
            raise ValueError("Exactly one of 'path' or 'data' is required.")

        self.verbose = verbose
        self._file = None
        self._mmap = None
        if path is not None:
            if not os.path.exists(path):
                raise FileNotFoundError(f"Archive file '{path}' not found.")
            if os.path.getsize(path) == 0:
                raise MalformedData(f"Archive file '{path}' is empty.")
            self._file = open(path, "rb")
            self._mmap = mmap.mmap(self._file.fileno(), 0, access=mmap.ACCESS_READ)
            data = self._mmap
            if name is None:
                name = os.path.splitext(os.path.basename(path))[0]

        self.name = name or ""
        self.key = KeyStream(iv)
        self.iv = self.key.iv
        self.reader = ByteCursor(data, self.key)
        self.parser = PropertyListParser(self.reader, max_depth=max_depth, quiet=quiet)
        self.max_depth = max_depth
        self._images: Dict[str, Node] = {}

        try:
            self._read_header()
            self._open_directory(version)
        except Exception:
            self.close()
            raise

    def _log(self, message: str):
        if self.verbose:
            print(message, file=sys.stderr)

    # --- Header and version ---

    def _read_header(self):
        r = self.reader
        magic = r.read_bytes(len(MAGIC))
        if magic != MAGIC:
            raise MalformedData(f"Invalid magic bytes. Expected {MAGIC!r}, got {magic!r}.")
        self.file_size = r.read_u64()
        self.data_start = r.read_u32()
        self.copyright = r.read_ascii_string()
        if self.data_start + 2 > r.size:
            raise MalformedData(f"Data start {self.data_start} lies outside the {r.size}-byte file.")
        r.set_position(self.data_start)
        self.encrypted_version = r.read_u16()
        self._log(f"[Header] data_start={self.data_start} size={self.file_size} '{self.copyright}'")

    def _open_directory(self, version: Optional[int]):
        if version is not None:
            ok, version_hash = verify_version(self.encrypted_version, version)
            if not ok:
                raise MalformedData(
                    f"Version {version} does not match the archive's version tag {self.encrypted_version}."
                )
            self.root = self._enumerate(version_hash)
            self.version, self.version_hash = version, version_hash
            self._log(f"[Version] Using version {version} (hash 0x{version_hash:08X}).")
            return

        for candidate in range(MAX_VERSION_SCAN):
            ok, version_hash = verify_version(self.encrypted_version, candidate)
            if not ok:
                continue
            try:
                root = self._enumerate(version_hash)
                self._check_first_image(root)
            except WzError as e:
                self._log(f"[Version] Candidate {candidate} rejected: {e}")
                continue
            self.root = root
            self.version, self.version_hash = candidate, version_hash
            self._log(f"[Version] Detected version {candidate} (hash 0x{version_hash:08X}).")
            return

        raise MalformedData(f"No version below {MAX_VERSION_SCAN} decodes this archive's directory.")

    def _enumerate(self, version_hash: int) -> Node:
        root = Node(Kind.DIRECTORY, self.name)
        self.parse_directory(root, self.data_start + 2, version_hash)
        return root

    def _check_first_image(self, node: Node):
        image = _first_image(node)
        if image is None:
            return
        r = self.reader
        prev = r.get_position()
        try:
            r.set_position(image.entry_info().offset)
            if not r.is_image_probe():
                raise MalformedData(f"Image {image.path!r} has no property header.")
        finally:
            r.set_position(prev)

    # --- Directory table ---

    def parse_directory(self, target: Node, offset: int, version_hash: int, depth: int = 0):
        if depth > self.max_depth:
            raise MalformedData(f"Directory nesting deeper than {self.max_depth} levels at {target.path!r}.")
        r = self.reader
        r.set_position(offset)
        count = r.read_compressed_int()
        subdirs = []

        for _ in range(count):
            entry_type = r.read_u8()
            if entry_type == ENTRY_SKIP:
                r.skip(4 + 2)
                r.read_offset(self.data_start, version_hash)
                continue
            if entry_type == ENTRY_REDIRECT:
                string_offset = r.read_i32()
                prev = r.get_position()
                r.set_position(self.data_start + string_offset)
                entry_type = r.read_u8()
                name = r.read_cipher_string()
                r.set_position(prev)
            elif entry_type in (ENTRY_DIRECTORY, ENTRY_IMAGE):
                name = r.read_cipher_string()
            else:
                raise MalformedData(f"Unknown directory entry type {entry_type} in {target.path!r}.")

            size = r.read_compressed_int()
            checksum = r.read_compressed_int()
            entry_offset = r.read_offset(self.data_start, version_hash)
            if entry_offset >= r.size:
                raise OutOfRange(f"Entry {name!r} points to {entry_offset}, past end of file ({r.size}).")

            info = EntryInfo(entry_offset, size, checksum)
            if entry_type == ENTRY_DIRECTORY:
                subdirs.append(target.append_child(name, Node(Kind.DIRECTORY, value=info)))
            elif entry_type == ENTRY_IMAGE:
                target.append_child(name, Node(Kind.IMAGE, value=info))
            else:
                raise MalformedData(f"Redirected entry {name!r} has unknown type {entry_type}.")

        self._log(f"[Directory] {target.path or '/'}: {target.children_count()} entries.")
        for sub in subdirs:
            self.parse_directory(sub, sub.entry_info().offset, version_hash, depth + 1)

    def parse_image(self, node: Node):
        """Parses an Image node's property list into the node itself."""
        if node.kind != Kind.IMAGE:
            raise WrongKind(f"{node.path!r} is {node.kind.value}, not Image.")
        if self._images.get(node.path) is node:
            return
        offset = node.entry_info().offset
        r = self.reader
        prev = r.get_position()
        try:
            r.set_position(offset)
            if not r.is_image_probe():
                raise MalformedData(f"Image {node.path!r} at {offset} has no property header.")
            node.clear_children()
            self.parser.parse_property_list(node, offset)
        finally:
            r.set_position(prev)
        self._log(f"[Image] Parsed {node.path} ({node.children_count()} entries).")

    # --- Path resolution ---

    def resolve(self, start: Node, path: str) -> Node:
        """Walks a slash path from `start`, following links and opening images."""
        return self._resolve(start, path, 0)

    def _resolve(self, start: Node, path: str, hops: int) -> Node:
        node = start
        parts = path.strip("/").split("/") if path.strip("/") else []
        # interior empty components name children whose stored name is ""
        for part in parts:
            if part == "..":
                if node.parent is None:
                    raise InvalidPath(f"'..' above the root in {path!r} (from {start.path!r}).")
                node = node.parent
                continue

            child = node.get_child(part)
            if child is None:
                raise NodeNotFound(f"No child {part!r} under {node.path!r}.")
            node = self._follow(child, hops)
        return node

    def _follow(self, node: Node, hops: int) -> Node:
        if node.kind == Kind.UOL:
            if hops >= MAX_UOL_HOPS:
                raise InvalidPath(f"Link chain through {node.path!r} exceeds {MAX_UOL_HOPS} hops.")
            node = self._resolve(node.parent, node.as_uol().target, hops + 1)

        if node.kind == Kind.IMAGE:
            key = node.path
            cached = self._images.get(key)
            if cached is not None:
                return cached
            self.parse_image(node)
            self._images[key] = node
        return node

    def get(self, path: str) -> Node:
        return self.resolve(self.root, path)

    __getitem__ = get

    def cached_images(self):
        return list(self._images)

    @property
    def warnings(self):
        return self.parser.warnings

    # --- Payload spans ---

    def _span(self, offset: int, size: int) -> bytes:
        if offset < 0 or size < 0 or offset + size > self.reader.size:
            raise OutOfRange(f"Span [{offset}, {offset + size}) outside buffer.")
        return bytes(self.reader.buffer[offset:offset + size])

    def canvas_bytes(self, node: Node) -> bytes:
        canvas = node.as_canvas()
        return self._span(canvas.offset, canvas.size)

    def sound_bytes(self, node: Node) -> bytes:
        sound = node.as_sound()
        return self._span(sound.offset, sound.size)

    # --- Lifetime ---

    def close(self):
        self._images.clear()
        if self._mmap is not None:
            self._mmap.close()
            self._mmap = None
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def _first_image(node: Node) -> Optional[Node]:
    for child in node.iter_nodes():
        if child.kind == Kind.IMAGE:
            return child
    for child in node.iter_nodes():
        if child.kind == Kind.DIRECTORY:
            found = _first_image(child)
            if found is not None:
                return found
    return None

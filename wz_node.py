"""
WZ archive decoder - property tree

A Node is one entry of the decoded tree: a directory, a lazily parsed image,
or a typed property. Each parent owns its children; `parent` is a plain
back-reference. Children are kept per name in insertion order because names
may repeat within one parent.

Copyright (c) 2025 @hejhdiss(Muhammed Shafin P)
All rights reserved.
Licensed under GPLv3.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from wz_errors import WrongKind


class Kind(Enum):
    NOT_SET = "NotSet"
    NULL = "Null"
    INT = "Int"
    UNSIGNED_SHORT = "UnsignedShort"
    FLOAT = "Float"
    DOUBLE = "Double"
    STRING = "String"
    SUB_PROPERTY = "SubProperty"
    CANVAS = "Canvas"
    VECTOR2D = "Vector2D"
    CONVEX2D = "Convex2D"
    SOUND = "Sound"
    UOL = "UOL"
    PROPERTY = "Property"
    DIRECTORY = "Directory"
    IMAGE = "Image"


PROPERTY_KINDS = frozenset({
    Kind.NULL, Kind.INT, Kind.UNSIGNED_SHORT, Kind.FLOAT, Kind.DOUBLE,
    Kind.STRING, Kind.SUB_PROPERTY, Kind.CANVAS, Kind.VECTOR2D,
    Kind.CONVEX2D, Kind.SOUND, Kind.UOL, Kind.PROPERTY,
})


# --- Payload records ---

@dataclass(frozen=True)
class Canvas:
    width: int
    height: int
    format: int
    format2: int
    size: int                 # bytes of the stored (compressed) pixel data
    offset: int               # start of the pixel data in the archive
    is_encrypted: bool
    uncompressed_size: Optional[int]  # None when the format sum is unknown


@dataclass(frozen=True)
class Sound:
    size: int
    length: int               # duration units as stored
    frequency: int
    offset: int


@dataclass(frozen=True)
class Vec2D:
    x: int
    y: int


@dataclass(frozen=True)
class UOL:
    target: str               # slash path, relative to the link's parent


@dataclass(frozen=True)
class EntryInfo:
    """Directory-table metadata for Directory and Image nodes."""
    offset: int
    size: int
    checksum: int


class Node:
    __slots__ = ("name", "parent", "children", "_kind", "_value")

    def __init__(self, kind: Kind = Kind.NOT_SET, name: str = "", value: Any = None):
        self._kind = kind
        self._value = value
        self.name = name
        self.parent: Optional["Node"] = None
        self.children: Dict[str, List["Node"]] = {}

    def __repr__(self):
        return f"<Node {self._kind.value} {self.path!r}>"

    @property
    def kind(self) -> Kind:
        return self._kind

    @property
    def value(self) -> Any:
        return self._value

    def set_value(self, value: Any):
        """Payload setter for decoders that fill a node after its children."""
        self._value = value

    @property
    def path(self) -> str:
        parts = []
        node = self
        while node is not None:
            parts.append(node.name)
            node = node.parent
        return "/".join(reversed(parts))

    @property
    def is_property(self) -> bool:
        return self._kind in PROPERTY_KINDS

    # --- Tree structure ---

    def append_child(self, name: str, node: "Node") -> "Node":
        if node.parent is not None:
            raise ValueError(f"Node {node.path!r} already has a parent.")
        node.name = name
        node.parent = self
        self.children.setdefault(name, []).append(node)
        return node

    def get_child(self, name: str) -> Optional["Node"]:
        nodes = self.children.get(name)
        return nodes[0] if nodes else None

    def get_children(self, name: str) -> List["Node"]:
        return list(self.children.get(name, ()))

    def children_count(self) -> int:
        return sum(len(nodes) for nodes in self.children.values())

    def clear_children(self):
        self.children = {}

    def __iter__(self) -> Iterator[Tuple[str, List["Node"]]]:
        return iter(self.children.items())

    def iter_nodes(self) -> Iterator["Node"]:
        """Every child in insertion order, same-named siblings included."""
        for nodes in self.children.values():
            yield from nodes

    def __contains__(self, name: str) -> bool:
        return name in self.children

    # --- Typed accessors ---

    def _expect(self, *kinds: Kind):
        if self._kind not in kinds:
            wanted = "/".join(k.value for k in kinds)
            raise WrongKind(f"{self.path!r} is {self._kind.value}, not {wanted}.")

    def as_null(self) -> None:
        self._expect(Kind.NULL)
        return None

    def as_ushort(self) -> int:
        self._expect(Kind.UNSIGNED_SHORT)
        return self._value

    def as_int(self) -> int:
        self._expect(Kind.INT)
        return self._value

    def as_float(self) -> float:
        self._expect(Kind.FLOAT)
        return self._value

    def as_double(self) -> float:
        self._expect(Kind.DOUBLE)
        return self._value

    def as_string(self) -> str:
        self._expect(Kind.STRING)
        return self._value

    def as_canvas(self) -> Canvas:
        self._expect(Kind.CANVAS)
        return self._value

    def as_sound(self) -> Sound:
        self._expect(Kind.SOUND)
        return self._value

    def as_vector(self) -> Vec2D:
        self._expect(Kind.VECTOR2D)
        return self._value

    def as_convex(self) -> List["Node"]:
        self._expect(Kind.CONVEX2D)
        return list(self.iter_nodes())

    def as_uol(self) -> UOL:
        self._expect(Kind.UOL)
        return self._value

    def entry_info(self) -> EntryInfo:
        self._expect(Kind.DIRECTORY, Kind.IMAGE)
        return self._value

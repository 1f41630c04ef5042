"""
WZ archive decoder - error types

Copyright (c) 2025 @hejhdiss(Muhammed Shafin P)
All rights reserved.
Licensed under GPLv3.
"""


class WzError(Exception):
    """Base class for every error raised while decoding an archive."""


class OutOfRange(WzError, IndexError):
    """A read or seek went past the end of the backing buffer."""


class MalformedData(WzError, ValueError):
    """The byte stream does not follow the archive format."""


class InvalidPath(WzError, ValueError):
    """A path cannot be walked ('..' above the root, broken link chain)."""


class NodeNotFound(WzError, KeyError):
    """A path component names a child that does not exist."""

    def __str__(self):
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0]) if self.args else ""


class WrongKind(WzError, TypeError):
    """A typed accessor was used on a node of another kind."""

"""Wikilink target resolution and the in-memory target index."""

from .resolver import InvalidTarget, normalize_target, qualified_path, resolve, strip_ext, suggested_uri
from .wikilink import WikilinkIndex

__all__ = [
    "WikilinkIndex",
    "InvalidTarget",
    "normalize_target",
    "qualified_path",
    "resolve",
    "strip_ext",
    "suggested_uri",
]

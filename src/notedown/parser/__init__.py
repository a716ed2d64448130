"""Markdown parsing with frontmatter, wikilink and task extraction."""

from .links import WIKILINK_PATTERN, LineIndex, extract_wikilinks_regex
from .markdown import ParseError, checksum, parse, parse_document, parse_strict

__all__ = [
    "parse",
    "parse_strict",
    "parse_document",
    "checksum",
    "ParseError",
    "LineIndex",
    "WIKILINK_PATTERN",
    "extract_wikilinks_regex",
]

"""Frontmatter filter engine and the document query service."""

from .filters import (
    AndFilter,
    FilterError,
    FilterExpression,
    MetadataFilter,
    MetadataOperator,
    NotFilter,
    OrFilter,
    and_,
    collect,
    evaluate,
    filter_documents,
    filter_iter,
    metadata_filter,
    not_,
    or_,
    parse_filter,
)
from .service import DocumentService

__all__ = [
    "AndFilter",
    "DocumentService",
    "FilterError",
    "FilterExpression",
    "MetadataFilter",
    "MetadataOperator",
    "NotFilter",
    "OrFilter",
    "and_",
    "collect",
    "evaluate",
    "filter_documents",
    "filter_iter",
    "metadata_filter",
    "not_",
    "or_",
    "parse_filter",
]

"""Filter expressions over document frontmatter.

A filter is a tree of metadata predicates combined with and/or/not. The
serialized form is JSON with a ``type`` discriminator::

    {"type": "or", "filters": [
        {"type": "metadata", "field": "author", "operator": "equals", "value": "Alice"},
        {"type": "metadata", "field": "priority", "operator": "equals", "value": 2}
    ]}

Evaluation rules:
- Integers and floats compare as 64-bit floats; booleans are never numeric.
- A missing field fails every operator except ``exists``/``not_exists``.
- Ordering operators fall back to string comparison and are false across types.
- Empty ``and``/``or`` and a missing filter accept everything.
"""

from __future__ import annotations

import json
import math
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator, Mapping
from contextlib import aclosing
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError


class FilterError(Exception):
    """Raised for unknown operators and malformed filter expressions."""

    pass


class MetadataOperator(str, Enum):
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN = "less_than"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    IN = "in"
    NOT_IN = "not_in"


class MetadataFilter(BaseModel):
    type: Literal["metadata"] = "metadata"
    field: str
    operator: MetadataOperator
    value: Any = None


class AndFilter(BaseModel):
    type: Literal["and"] = "and"
    filters: list[FilterExpression] = Field(default_factory=list)


class OrFilter(BaseModel):
    type: Literal["or"] = "or"
    filters: list[FilterExpression] = Field(default_factory=list)


class NotFilter(BaseModel):
    type: Literal["not"] = "not"
    filter: FilterExpression | None = None


FilterExpression = Annotated[
    Union[MetadataFilter, AndFilter, OrFilter, NotFilter],
    Field(discriminator="type"),
]

AndFilter.model_rebuild()
OrFilter.model_rebuild()
NotFilter.model_rebuild()

_expression_adapter: TypeAdapter = TypeAdapter(FilterExpression)


# ─────────────────────────────────────────────────────────────────────────────
# Builders and decoding
# ─────────────────────────────────────────────────────────────────────────────


def metadata_filter(field: str, operator: MetadataOperator | str, value: Any = None) -> MetadataFilter:
    return MetadataFilter(field=field, operator=MetadataOperator(operator), value=value)


def and_(*filters: FilterExpression) -> AndFilter:
    return AndFilter(filters=list(filters))


def or_(*filters: FilterExpression) -> OrFilter:
    return OrFilter(filters=list(filters))


def not_(filter: FilterExpression | None) -> NotFilter:
    return NotFilter(filter=filter)


def parse_filter(data: Any) -> FilterExpression | None:
    """Decode a serialized filter (dict, JSON string or model).

    Raises:
        FilterError: If the payload is not a valid filter tree.
    """
    if data is None or isinstance(data, (MetadataFilter, AndFilter, OrFilter, NotFilter)):
        return data
    try:
        if isinstance(data, (str, bytes)):
            return _expression_adapter.validate_json(data)
        return _expression_adapter.validate_python(data)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '(root)'}: {err['msg']}" for err in e.errors()
        )
        raise FilterError(f"invalid filter: {details}") from e


def dump_filter(expression: FilterExpression | None) -> dict[str, Any] | None:
    if expression is None:
        return None
    return _expression_adapter.dump_python(expression, mode="json")


# ─────────────────────────────────────────────────────────────────────────────
# Value semantics
# ─────────────────────────────────────────────────────────────────────────────


def as_number(value: Any) -> float | None:
    """Common float form of int and float values. Booleans are not numbers."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def values_equal(left: Any, right: Any) -> bool:
    """Numeric coercion where both sides are numbers, structural equality otherwise."""
    left_num, right_num = as_number(left), as_number(right)
    if left_num is not None and right_num is not None:
        return left_num == right_num

    if isinstance(left, list) and isinstance(right, list):
        return len(left) == len(right) and all(values_equal(a, b) for a, b in zip(left, right))
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(values_equal(left[k], right[k]) for k in left)
    return type(left) is type(right) and left == right


def canonical_string(value: Any) -> str:
    """Render a value for prefix/suffix tests.

    Whole floats drop their fractional part (``5.0`` -> ``"5"``); booleans
    render as ``true``/``false``.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    return json.dumps(value, sort_keys=True, default=str)


def _compare(left: Any, right: Any) -> int | None:
    """-1/0/1 ordering, or None when the operands are not comparable."""
    left_num, right_num = as_number(left), as_number(right)
    if left_num is not None and right_num is not None:
        return (left_num > right_num) - (left_num < right_num)
    if isinstance(left, str) and isinstance(right, str):
        return (left > right) - (left < right)
    return None


def _contains(doc_value: Any, filter_value: Any) -> bool:
    if isinstance(doc_value, list):
        return any(values_equal(item, filter_value) for item in doc_value)
    if isinstance(doc_value, str) and isinstance(filter_value, str):
        return filter_value in doc_value
    return False


def _in(doc_value: Any, filter_value: Any) -> bool:
    if not isinstance(filter_value, list):
        return False
    return any(values_equal(doc_value, item) for item in filter_value)


# ─────────────────────────────────────────────────────────────────────────────
# Evaluation
# ─────────────────────────────────────────────────────────────────────────────


def _evaluate_metadata(expr: MetadataFilter, metadata: Mapping[str, Any]) -> bool:
    try:
        operator = MetadataOperator(expr.operator)
    except ValueError as e:
        raise FilterError(f"unknown metadata operator: {expr.operator!r}") from e

    present = expr.field in metadata
    if operator is MetadataOperator.EXISTS:
        return present
    if operator is MetadataOperator.NOT_EXISTS:
        return not present
    if not present:
        return False

    doc_value = metadata[expr.field]
    value = expr.value

    if operator is MetadataOperator.EQUALS:
        return values_equal(doc_value, value)
    if operator is MetadataOperator.NOT_EQUALS:
        return not values_equal(doc_value, value)
    if operator is MetadataOperator.CONTAINS:
        return _contains(doc_value, value)
    if operator is MetadataOperator.STARTS_WITH:
        return canonical_string(doc_value).startswith(canonical_string(value))
    if operator is MetadataOperator.ENDS_WITH:
        return canonical_string(doc_value).endswith(canonical_string(value))
    if operator is MetadataOperator.IN:
        return _in(doc_value, value)
    if operator is MetadataOperator.NOT_IN:
        return not _in(doc_value, value)

    order = _compare(doc_value, value)
    if order is None:
        return False
    if operator is MetadataOperator.GREATER_THAN:
        return order > 0
    if operator is MetadataOperator.GREATER_THAN_OR_EQUAL:
        return order >= 0
    if operator is MetadataOperator.LESS_THAN:
        return order < 0
    if operator is MetadataOperator.LESS_THAN_OR_EQUAL:
        return order <= 0
    raise FilterError(f"unsupported metadata operator: {operator.value}")


def evaluate(expression: FilterExpression | None, metadata: Mapping[str, Any] | None) -> bool:
    """Decide whether a frontmatter mapping satisfies ``expression``.

    Raises:
        FilterError: On unknown operators or node types.
    """
    if expression is None:
        return True
    metadata = metadata or {}

    if isinstance(expression, MetadataFilter):
        return _evaluate_metadata(expression, metadata)
    if isinstance(expression, AndFilter):
        return all(evaluate(child, metadata) for child in expression.filters)
    if isinstance(expression, OrFilter):
        if not expression.filters:
            return True
        return any(evaluate(child, metadata) for child in expression.filters)
    if isinstance(expression, NotFilter):
        return not evaluate(expression.filter, metadata)
    raise FilterError(f"unknown filter expression: {type(expression).__name__}")


def _metadata_of(document: Any) -> Mapping[str, Any] | None:
    if isinstance(document, Mapping):
        return document
    if hasattr(document, "metadata"):
        return document.metadata
    return getattr(document, "frontmatter", None)


# ─────────────────────────────────────────────────────────────────────────────
# Streaming drivers
# ─────────────────────────────────────────────────────────────────────────────


def filter_iter(documents: Iterable[Any], expression: Any) -> Iterator[Any]:
    """Yield the documents accepted by ``expression`` in input order.

    A FilterError ends the iteration; documents already yielded stand.
    """
    parsed = parse_filter(expression)
    for document in documents:
        if evaluate(parsed, _metadata_of(document)):
            yield document


async def filter_documents(documents: AsyncIterable[Any], expression: Any) -> AsyncIterator[Any]:
    """Async counterpart of :func:`filter_iter`.

    Documents are evaluated one at a time as they arrive and accepted ones are
    emitted immediately. The first FilterError closes the upstream stream and
    propagates to the consumer; no further documents follow it.
    """
    parsed = parse_filter(expression)
    stream = documents if hasattr(documents, "aclose") else _passthrough(documents)
    async with aclosing(stream) as source:
        async for document in source:
            if evaluate(parsed, _metadata_of(document)):
                yield document


async def _passthrough(documents: AsyncIterable[Any]) -> AsyncIterator[Any]:
    async for document in documents:
        yield document


async def collect(stream: AsyncIterable[Any]) -> tuple[list[Any], FilterError | None]:
    """Drain a filtered stream into (accepted documents, error).

    On error the partial result is discarded and the single error is returned.
    """
    accepted: list[Any] = []
    try:
        async for document in stream:
            accepted.append(document)
    except FilterError as e:
        return [], e
    return accepted, None

"""Compile decoded query-string parameters into a backend-neutral QuerySpec.

Reserved keys drive pagination (``page``, ``limit``, ``offset``), free-text
search (``search``) and ordering (``sort``). Every other key prefixed with
``f_`` whose remainder is an allowed filter field becomes a filter clause:

    ?f_status=active           -> {"status": "active"}
    ?f_balance=>=1000          -> {"balance": {"GTE": 1000}}
    ?f_role=admin|editor       -> {"OR": [{"role": "admin"}, {"role": "editor"}]}
    ?f_user.email=a@b.c        -> {"$user.email$": "a@b.c"}

Nothing here raises on bad input: unknown keys are dropped and malformed
values produce a partial spec.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Callable, Iterable, Mapping

from app.schemas.query import OrderClause, Pagination, QuerySpec, ResourceConfig

_LOG = logging.getLogger("app.query")

FILTER_PREFIX = "f_"
RESERVED_KEYS = frozenset({"search", "sort", "page", "limit", "offset"})

DEFAULT_LIMIT = "25"
DEFAULT_PAGE = "1"
NO_LIMIT = "-1"

SORT_SEPARATOR = "&"
SORT_DESC_MARKER = "-"

OP_AND = "AND"
OP_OR = "OR"
OP_ILIKE = "ILIKE"
OP_GTE = "GTE"
OP_LTE = "LTE"
OP_GT = "GT"
OP_LT = "LT"
OP_NE = "NE"

# Checked in this order: two-character symbols must win over their one-character prefixes.
LOGICAL_SYMBOLS = (("%", OP_AND), ("|", OP_OR))
COMPARISON_SYMBOLS = (
    (">=", OP_GTE),
    ("<=", OP_LTE),
    (">", OP_GT),
    ("<", OP_LT),
    ("!=", OP_NE),
)

FieldPathFormatter = Callable[[str], str]

_INT_PREFIX_RE = re.compile(r"^\s*([+-]?\d+)", re.ASCII)
# Plain decimal notation only: no digit separators, no non-ASCII digits, no inf/nan words.
_NUMBER_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$", re.ASCII)


def format_field_path(field: str) -> str:
    """Wrap association paths (``user.email``) as a literal reference token."""
    if "." in field:
        return f"${field}$"
    return field


def parse_field_path(token: str) -> list[str]:
    """Inverse of :func:`format_field_path`: ``$user.email$`` -> ``["user", "email"]``."""
    text = str(token or "")
    if len(text) > 1 and text.startswith("$") and text.endswith("$"):
        text = text[1:-1]
    return [part for part in text.split(".") if part]


def _parse_int(raw: Any) -> int | None:
    # Integer-prefix parsing: "10abc" -> 10, "abc" -> None.
    if raw is None:
        return None
    match = _INT_PREFIX_RE.match(str(raw))
    if match is None:
        return None
    try:
        return int(match.group(1))
    except ValueError:
        # Past the interpreter's int string-conversion digit limit.
        return None


def coerce_value(raw: Any) -> Any:
    if not isinstance(raw, str):
        return raw
    text = raw.strip()
    if not _NUMBER_RE.match(text):
        return raw
    try:
        number = float(text)
    except ValueError:
        return raw
    if not math.isfinite(number):
        return raw
    if number.is_integer() and "." not in text and "e" not in text.lower():
        try:
            return int(text)
        except ValueError:
            return number
    return number


def resolve_pagination(page: str | None = None, limit: str | None = None, offset: str | None = None) -> Pagination:
    raw_limit = DEFAULT_LIMIT if limit is None else limit
    if raw_limit == NO_LIMIT:
        return Pagination(limit=None, offset=0)

    parsed_limit = _parse_int(raw_limit)
    if parsed_limit is None:
        return Pagination(limit=None, offset=0)

    if offset is not None and str(offset) != "":
        parsed_offset = _parse_int(offset)
        return Pagination(limit=parsed_limit, offset=parsed_offset if parsed_offset is not None else 0)

    parsed_page = _parse_int(DEFAULT_PAGE if page is None else page)
    if parsed_page is None:
        return Pagination(limit=parsed_limit, offset=0)
    return Pagination(limit=parsed_limit, offset=(parsed_page - 1) * parsed_limit)


def build_search_clause(
    search: str | None,
    config: ResourceConfig,
    format_path: FieldPathFormatter = format_field_path,
) -> dict[str, Any]:
    if not search or not config.search_fields:
        return {}
    pattern = f"%{search}%"
    clauses = [{format_path(field): {OP_ILIKE: pattern}} for field in config.search_fields]
    return {config.search_combinator: clauses}


def build_sort_clause(
    sort: str | None,
    config: ResourceConfig,
    format_path: FieldPathFormatter = format_field_path,
) -> list[OrderClause]:
    """Parse ``name&-createdAt`` style sort strings.

    The key is whatever precedes the first ``-`` in a token, so a token with a
    leading ``-`` yields an empty key and is dropped unless ``""`` is an
    allowed sort field.
    """
    if not sort:
        return []
    order: list[OrderClause] = []
    for token in sort.split(SORT_SEPARATOR):
        key = token.split(SORT_DESC_MARKER)[0]
        direction = "DESC" if token.startswith(SORT_DESC_MARKER) else "ASC"
        if key in config.sort_fields:
            order.append(OrderClause(field=format_path(key), direction=direction))
    return order


def _filter_field(raw_key: str, config: ResourceConfig) -> str | None:
    if not raw_key.startswith(FILTER_PREFIX):
        return None
    field = raw_key[len(FILTER_PREFIX):]
    if field not in config.filter_fields:
        return None
    return field


def compile_filter_clauses(
    params: Mapping[str, Any],
    config: ResourceConfig,
    format_path: FieldPathFormatter = format_field_path,
) -> dict[str, Any]:
    predicate: dict[str, Any] = {}
    for raw_key, raw_value in params.items():
        if raw_key in RESERVED_KEYS:
            continue
        field = _filter_field(str(raw_key), config)
        if field is None:
            continue
        path = format_path(field)
        value = "" if raw_value is None else str(raw_value)

        logical = next(((symbol, op) for symbol, op in LOGICAL_SYMBOLS if symbol in value), None)
        if logical is not None:
            symbol, op = logical
            group = predicate.setdefault(op, [])
            group.extend({path: coerce_value(part)} for part in value.split(symbol))
            continue

        comparison = next(((symbol, op) for symbol, op in COMPARISON_SYMBOLS if symbol in value), None)
        if comparison is not None:
            symbol, op = comparison
            predicate[path] = {op: coerce_value(value.split(symbol)[1])}
        else:
            predicate[path] = coerce_value(value)
    return predicate


def merge_predicate(contributions: Iterable[tuple[str, Mapping[str, Any]]]) -> dict[str, Any]:
    """Shallow, ordered merge: a later contribution replaces an earlier key outright."""
    merged: dict[str, Any] = {}
    owners: dict[str, str] = {}
    for source, clauses in contributions:
        for key, value in clauses.items():
            if key in merged:
                _LOG.debug("predicate key %r from %s replaced by %s", key, owners[key], source)
            merged[key] = value
            owners[key] = source
    return merged


def compile_query(
    raw_params: Mapping[str, Any],
    config: ResourceConfig,
    *,
    format_path: FieldPathFormatter = format_field_path,
) -> QuerySpec:
    params = dict(raw_params)
    pagination = resolve_pagination(
        page=params.get("page"),
        limit=params.get("limit"),
        offset=params.get("offset"),
    )
    search = build_search_clause(params.get("search"), config, format_path)
    order = build_sort_clause(params.get("sort"), config, format_path)
    filters = compile_filter_clauses(
        {key: value for key, value in params.items() if key not in RESERVED_KEYS},
        config,
        format_path,
    )
    predicate = merge_predicate([("search", search), ("filter", filters)])
    return QuerySpec(pagination=pagination, order=order, predicate=predicate)

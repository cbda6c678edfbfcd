from __future__ import annotations

import logging
import math
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from sqlalchemy import and_, asc, desc, false, or_
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Query

from app.schemas.query import QuerySpec
from app.services.query_compiler import (
    OP_AND,
    OP_GT,
    OP_GTE,
    OP_ILIKE,
    OP_LT,
    OP_LTE,
    OP_NE,
    OP_OR,
    parse_field_path,
)

_LOG = logging.getLogger("app.query")

LOGICAL_KEYS = {OP_AND, OP_OR}


def _column_python_type(column):
    try:
        return column.property.columns[0].type.python_type
    except Exception:
        return None


def _bind_number(python_type, value):
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        if python_type is int:
            return int(text)
        if python_type is float:
            number = float(text)
            return number if math.isfinite(number) else None
        number = Decimal(text)
        return number if number.is_finite() else None
    except (ValueError, TypeError, InvalidOperation):
        return None


def _bind_value(column, value):
    python_type = _column_python_type(column)
    if python_type in {int, float, Decimal}:
        return _bind_number(python_type, value)
    if python_type is uuid.UUID and isinstance(value, str):
        try:
            return uuid.UUID(value.strip())
        except ValueError:
            return None
    if python_type is str and isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


def _leaf_expression(column, op: str, value):
    if op == OP_ILIKE:
        return column.ilike(str(value))
    bound = _bind_value(column, value)
    if bound is None and value is not None:
        return false()
    if op == OP_GT:
        return column > bound
    if op == OP_GTE:
        return column >= bound
    if op == OP_LT:
        return column < bound
    if op == OP_LTE:
        return column <= bound
    if op == OP_NE:
        return column != bound
    _LOG.debug("unsupported operator %r for %s", op, column)
    return None


def _equality_expression(column, value):
    if value is None:
        return column.is_(None)
    bound = _bind_value(column, value)
    if bound is None:
        return false()
    return column == bound


class _SpecTranslator:
    """Resolves field tokens against a model, outer-joining association paths once each."""

    def __init__(self, query: Query, model):
        self.query = query
        self.model = model
        self._joined: set[tuple[str, ...]] = set()

    def resolve(self, token: str):
        parts = parse_field_path(token)
        if not parts:
            return None
        current = self.model
        for depth, name in enumerate(parts[:-1]):
            relationship = sa_inspect(current).relationships.get(name)
            if relationship is None:
                return None
            path = tuple(parts[: depth + 1])
            if path not in self._joined:
                self.query = self.query.outerjoin(getattr(current, name))
                self._joined.add(path)
            current = relationship.mapper.class_
        if parts[-1] not in sa_inspect(current).column_attrs:
            return None
        return getattr(current, parts[-1])

    def expressions(self, predicate: Mapping[str, Any]) -> list:
        result = []
        for key, value in predicate.items():
            if key in LOGICAL_KEYS:
                grouped = self._group_expression(key, value)
                if grouped is not None:
                    result.append(grouped)
                continue
            column = self.resolve(key)
            if column is None:
                _LOG.debug("skipping unknown field %r on %s", key, self.model.__name__)
                continue
            if isinstance(value, Mapping):
                for op, operand in value.items():
                    expr = _leaf_expression(column, op, operand)
                    if expr is not None:
                        result.append(expr)
            else:
                result.append(_equality_expression(column, value))
        return result

    def _group_expression(self, op: str, clauses):
        parts = []
        for clause in clauses or []:
            if not isinstance(clause, Mapping):
                continue
            exprs = self.expressions(clause)
            if exprs:
                parts.append(and_(*exprs))
        if not parts:
            return None
        return and_(*parts) if op == OP_AND else or_(*parts)


def apply_query_spec(q: Query, model, spec: QuerySpec, *, paginate: bool = True) -> Query:
    translator = _SpecTranslator(q, model)
    expressions = translator.expressions(spec.predicate)
    order_columns = []
    for clause in spec.order:
        col = translator.resolve(clause.field)
        if col is None:
            continue
        order_columns.append(desc(col) if clause.direction == "DESC" else asc(col))

    q = translator.query
    if expressions:
        q = q.filter(*expressions)
    if order_columns:
        q = q.order_by(*order_columns)
    if paginate:
        q = apply_pagination(q, spec)
    return q


def apply_pagination(q: Query, spec: QuerySpec) -> Query:
    offset = max(int(spec.pagination.offset or 0), 0)
    if offset:
        q = q.offset(offset)
    limit = spec.pagination.limit
    if limit is not None and limit >= 0:
        q = q.limit(limit)
    return q

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session

from app.schemas.query import QuerySpec, ResourceConfig
from app.services.query_compiler import FieldPathFormatter, compile_query, format_field_path
from app.services.query_executor import apply_pagination, apply_query_spec


def _serialize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _serialize_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize_value(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    return value


def _row_to_dict(row: Any) -> dict[str, Any]:
    mapper = sa_inspect(type(row))
    return {column.key: _serialize_value(getattr(row, column.key)) for column in mapper.column_attrs}


class ResourceService:
    """Lists one model through the query compiler, using that resource's capability set."""

    def __init__(self, model, config: ResourceConfig, *, format_path: FieldPathFormatter = format_field_path):
        self.model = model
        self.config = config
        self.format_path = format_path

    def get_params(self, raw_params: Mapping[str, Any]) -> QuerySpec:
        return compile_query(raw_params, self.config, format_path=self.format_path)

    def list(self, db: Session, raw_params: Mapping[str, Any]) -> dict[str, Any]:
        spec = self.get_params(raw_params)
        filtered = apply_query_spec(db.query(self.model), self.model, spec, paginate=False)
        total = filtered.order_by(None).count()
        rows = apply_pagination(filtered, spec).all()
        return {
            "items": [_row_to_dict(row) for row in rows],
            "total": total,
            "limit": spec.pagination.limit,
            "offset": spec.pagination.offset,
        }

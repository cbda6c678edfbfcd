from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Literal, Optional, Tuple

Direction = Literal["ASC", "DESC"]
Combinator = Literal["AND", "OR"]

class ResourceConfig(BaseModel):
    """Query capabilities of one resource type. Built once, shared read-only."""

    model_config = ConfigDict(frozen=True)

    search_fields: Tuple[str, ...] = ()
    sort_fields: Tuple[str, ...] = ()
    filter_fields: Tuple[str, ...] = ()
    # Declared for forward compatibility; nothing consumes them yet.
    date_scope: Tuple[str, ...] = ()
    embed: Tuple[str, ...] = ()
    search_combinator: Combinator = "AND"

class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    limit: Optional[int] = None
    offset: int = 0

class OrderClause(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    direction: Direction = "ASC"

class QuerySpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    pagination: Pagination = Field(default_factory=Pagination)
    order: List[OrderClause] = Field(default_factory=list)
    predicate: Dict[str, Any] = Field(default_factory=dict)

class ListPage(BaseModel):
    items: List[Dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    limit: Optional[int] = None
    offset: int = 0

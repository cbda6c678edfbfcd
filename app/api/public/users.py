from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.user import User
from app.schemas.query import ListPage, ResourceConfig
from app.services.resource_service import ResourceService

router = APIRouter()

USER_QUERY_CONFIG = ResourceConfig(
    search_fields=("full_name", "email"),
    sort_fields=("full_name", "email", "balance", "created_at"),
    filter_fields=("status", "role", "balance", "email"),
    date_scope=("created_at",),
    embed=("posts",),
)

users_service = ResourceService(User, USER_QUERY_CONFIG)


@router.get("", response_model=ListPage)
def list_users(request: Request, db: Session = Depends(get_db)):
    return users_service.list(db, request.query_params)

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.post import Post
from app.schemas.query import ListPage, ResourceConfig
from app.services.resource_service import ResourceService

router = APIRouter()

POST_QUERY_CONFIG = ResourceConfig(
    search_fields=("title", "body"),
    sort_fields=("title", "views", "created_at", "user.full_name"),
    filter_fields=("status", "views", "user_id", "user.email", "user.role"),
    date_scope=("created_at",),
    embed=("user",),
)

posts_service = ResourceService(Post, POST_QUERY_CONFIG)


@router.get("", response_model=ListPage)
def list_posts(request: Request, db: Session = Depends(get_db)):
    return posts_service.list(db, request.query_params)

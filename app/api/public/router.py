from fastapi import APIRouter
from app.api.public import otp, posts, users

router = APIRouter()
router.include_router(users.router, prefix="/users", tags=["Users"])
router.include_router(posts.router, prefix="/posts", tags=["Posts"])
router.include_router(otp.router, prefix="/otp", tags=["Auth"])

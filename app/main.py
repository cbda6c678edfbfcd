from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.core.request_logging import install_request_logging
from app.db.session import connect_db
from app.api.public.router import router as public_router

@asynccontextmanager
async def lifespan(_app: FastAPI):
    # connect_db blocks on sleep between retries; keep it off the event loop.
    await run_in_threadpool(connect_db)
    yield

app = FastAPI(title=settings.APP_NAME, version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_request_logging(app)

app.include_router(public_router, prefix="/api")

@app.get("/", include_in_schema=False)
def landing():
    return JSONResponse({"service": settings.APP_NAME, "status": "ok"})

@app.get("/health")
def health():
    return {"status": "ok"}

from __future__ import annotations

import logging
import time

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from app.core.config import settings

_LOG = logging.getLogger("app.db")


class DatabaseUnavailableError(Exception):
    pass


class Base(DeclarativeBase):
    pass


engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _register_models() -> None:
    # Importing the model modules registers their tables on Base.metadata.
    from app.models.otp_session import OtpSession  # noqa: F401
    from app.models.post import Post  # noqa: F401
    from app.models.user import User  # noqa: F401


def connect_db(bind=None, *, sleep=time.sleep, clock=time.monotonic) -> None:
    """Check the database answers and sync the schema, retrying until the connect timeout.

    Raises DatabaseUnavailableError once DB_CONNECT_TIMEOUT_SECONDS has elapsed
    without a successful round trip.
    """
    target = bind if bind is not None else engine
    timeout = max(float(settings.DB_CONNECT_TIMEOUT_SECONDS), 0.0)
    delay = max(float(settings.DB_RECONNECT_DELAY_SECONDS), 0.0)
    deadline = clock() + timeout
    attempt = 0

    while True:
        attempt += 1
        try:
            with target.connect() as conn:
                conn.execute(text("SELECT 1"))
            if settings.DB_SYNC_SCHEMA:
                _register_models()
                Base.metadata.create_all(bind=target)
            _LOG.info("DB connected (attempt %s)", attempt)
            return
        except SQLAlchemyError as exc:
            if clock() + delay > deadline:
                _LOG.error("DB connection failed after %s attempts: %s", attempt, exc)
                raise DatabaseUnavailableError("DB connection failed") from exc
            _LOG.warning("DB connection failed, reconnecting in %.1fs (attempt %s)", delay, attempt)
            sleep(delay)

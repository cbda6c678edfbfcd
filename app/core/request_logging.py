from __future__ import annotations

import logging
import re
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")
_LOG = logging.getLogger("app.http")


def _request_id_from_header(raw: str | None) -> str:
    value = str(raw or "").strip()
    if not value or not _REQUEST_ID_RE.fullmatch(value):
        return uuid4().hex
    return value


def install_request_logging(app: FastAPI) -> None:
    @app.middleware("http")
    async def _request_logging_middleware(request: Request, call_next):
        request_id = _request_id_from_header(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        started_at = perf_counter()

        response = await call_next(request)

        # Query results depend on the full query string; never serve them from a shared cache.
        response.headers["Cache-Control"] = "no-store"
        response.headers[REQUEST_ID_HEADER] = request_id

        _LOG.info(
            "%s %s query=%r status=%s duration_ms=%.2f request_id=%s",
            request.method,
            request.url.path,
            request.url.query,
            response.status_code,
            (perf_counter() - started_at) * 1000.0,
            request_id,
        )
        return response

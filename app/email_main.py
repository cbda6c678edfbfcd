from __future__ import annotations

from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from app.core.config import settings
from app.services.email_service import EmailDeliveryError, send_email_via_smtp

app = FastAPI(title="restful-query-email-service")


class InternalEmailSend(BaseModel):
    to: list[str] = Field(default_factory=list)
    subject: str
    html: str
    text: str | None = None
    is_multiple: bool = False


@app.get("/health")
def health():
    return {"status": "ok", "service": "email-service"}


@app.post("/internal/send")
def internal_send(payload: InternalEmailSend, x_internal_token: str | None = Header(default=None)):
    expected = str(settings.INTERNAL_SERVICE_TOKEN or "").strip()
    if not expected:
        raise HTTPException(status_code=500, detail="INTERNAL_SERVICE_TOKEN is not configured")
    if str(x_internal_token or "").strip() != expected:
        raise HTTPException(status_code=401, detail="Invalid internal token")
    try:
        result = send_email_via_smtp(
            to=payload.to,
            subject=payload.subject,
            html=payload.html,
            text=payload.text,
            is_multiple=payload.is_multiple,
        )
    except EmailDeliveryError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"status": "sent", "result": result}

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import create_access_token, hash_secret, verify_secret
from app.db.session import get_db
from app.models.otp_session import OtpSession
from app.schemas.public import OtpSend, OtpVerify
from app.services.email_service import EmailDeliveryError, send_otp_email_message
from app.services.otp_service import generate_otp

router = APIRouter()

OTP_SIGN_IN_PURPOSE = "SIGN_IN"
OTP_VERIFY_EMAIL_PURPOSE = "VERIFY_EMAIL"
ALLOWED_PURPOSES = {OTP_SIGN_IN_PURPOSE, OTP_VERIFY_EMAIL_PURPOSE}


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime | None) -> datetime:
    if dt is None:
        return _now_utc()
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _normalize_purpose(raw: str | None) -> str:
    return str(raw or "").strip().upper()


def _normalize_email(raw: str | None) -> str:
    return str(raw or "").strip().lower()


def _validated_or_400(purpose_raw: str | None, email_raw: str | None) -> tuple[str, str]:
    purpose = _normalize_purpose(purpose_raw)
    if purpose not in ALLOWED_PURPOSES:
        raise HTTPException(status_code=400, detail="Unsupported OTP purpose")
    email = _normalize_email(email_raw)
    if not email or "@" not in email:
        raise HTTPException(status_code=400, detail='Field "email" is required')
    return purpose, email


@router.post("/send")
def send_otp(payload: OtpSend, db: Session = Depends(get_db)):
    purpose, email = _validated_or_400(payload.purpose, payload.email)

    code = generate_otp(settings.OTP_LENGTH)
    try:
        delivery_response = send_otp_email_message(email=email, code=code, purpose=purpose)
    except EmailDeliveryError as exc:
        raise HTTPException(status_code=502, detail=f"Could not send OTP email: {exc}") from exc

    ttl_minutes = int(max(settings.OTP_TTL_MINUTES, 1))
    db.query(OtpSession).filter(OtpSession.purpose == purpose, OtpSession.email == email).delete(
        synchronize_session=False
    )
    row = OtpSession(
        purpose=purpose,
        email=email,
        code_hash=hash_secret(code),
        attempts=0,
        expires_at=_now_utc() + timedelta(minutes=ttl_minutes),
    )
    db.add(row)
    db.commit()

    return {
        "status": "sent",
        "purpose": purpose,
        "ttl_seconds": ttl_minutes * 60,
        "delivery_response": delivery_response,
    }


@router.post("/verify")
def verify_otp(payload: OtpVerify, db: Session = Depends(get_db)):
    purpose, email = _validated_or_400(payload.purpose, payload.email)

    row = (
        db.query(OtpSession)
        .filter(OtpSession.purpose == purpose, OtpSession.email == email)
        .order_by(OtpSession.created_at.desc())
        .first()
    )
    if row is None:
        raise HTTPException(status_code=400, detail="OTP not found or expired")

    if _as_utc(row.expires_at) <= _now_utc():
        db.delete(row)
        db.commit()
        raise HTTPException(status_code=400, detail="OTP not found or expired")

    if int(row.attempts or 0) >= int(settings.OTP_MAX_ATTEMPTS):
        raise HTTPException(status_code=429, detail="Too many attempts")

    code = str(payload.code or "").strip()
    if not code or not verify_secret(code, row.code_hash):
        row.attempts = int(row.attempts or 0) + 1
        db.add(row)
        db.commit()
        raise HTTPException(status_code=400, detail="Invalid OTP code")

    db.delete(row)
    db.commit()
    return {
        "status": "verified",
        "purpose": purpose,
        "access_token": create_access_token(email, purpose=purpose),
        "token_type": "bearer",
    }

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Any
import httpx

from app.core.config import settings


class EmailDeliveryError(Exception):
    pass


logger = logging.getLogger("uvicorn.error")

MOCK_PROVIDERS = {"", "dummy", "mock", "console"}


def _normalize_email(value: str | None) -> str:
    return str(value or "").strip().lower()


def _normalize_recipients(to: str | list[str] | tuple[str, ...]) -> list[str]:
    raw = [to] if isinstance(to, str) else list(to or [])
    return [email for email in (_normalize_email(item) for item in raw) if email]


def _provider() -> str:
    return str(settings.EMAIL_PROVIDER or "dummy").strip().lower()


def _sender() -> str:
    return str(settings.EMAIL_FROM or "").strip() or "noreply@example.com"


def _mock_send(*, recipients: list[str], subject: str) -> dict[str, Any]:
    logger.warning("[EMAIL MOCK] to=%s subject=%s", ",".join(recipients), subject)
    return {
        "provider": "mock_email",
        "status": "accepted",
        "message": "Email provider response mocked",
        "sent": False,
        "mocked": True,
    }


def _build_message(*, sender: str, to: list[str], subject: str, html: str, text: str | None) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = ", ".join(to)
    msg["Subject"] = subject
    msg.set_content(text or "")
    msg.add_alternative(html, subtype="html")
    return msg


def _send_smtp(*, recipients: list[str], subject: str, html: str, text: str | None, is_multiple: bool) -> dict[str, Any]:
    host = str(settings.SMTP_HOST or "").strip()
    port = int(settings.SMTP_PORT or 0)
    username = str(settings.SMTP_USER or "").strip()
    password = str(settings.SMTP_PASSWORD or "").strip()
    sender = _sender()
    use_tls = bool(getattr(settings, "SMTP_USE_TLS", True))
    use_ssl = bool(getattr(settings, "SMTP_USE_SSL", False))

    if not host or not port:
        raise EmailDeliveryError("SMTP_HOST/SMTP_PORT are not configured")
    if use_tls and use_ssl:
        raise EmailDeliveryError("SMTP_USE_TLS and SMTP_USE_SSL cannot both be enabled")

    # One message per recipient keeps addresses private from each other.
    batches = [[email] for email in recipients] if is_multiple else [recipients]

    try:
        if use_ssl:
            smtp = smtplib.SMTP_SSL(host=host, port=port, timeout=15)
        else:
            smtp = smtplib.SMTP(host=host, port=port, timeout=15)
        with smtp as client:
            client.ehlo()
            if use_tls:
                client.starttls()
                client.ehlo()
            if username:
                client.login(username, password)
            for batch in batches:
                client.send_message(_build_message(sender=sender, to=batch, subject=subject, html=html, text=text))
    except Exception as exc:
        raise EmailDeliveryError(f"SMTP delivery failed: {exc}") from exc

    return {
        "provider": "smtp",
        "status": "accepted",
        "message": "Email sent",
        "sent": True,
        "messages": len(batches),
    }


def send_email_via_smtp(
    *,
    to: str | list[str],
    subject: str,
    html: str,
    text: str | None = None,
    is_multiple: bool = False,
) -> dict[str, Any]:
    recipients = _normalize_recipients(to)
    if not recipients:
        raise EmailDeliveryError("No valid recipient email")
    return _send_smtp(recipients=recipients, subject=subject, html=html, text=text, is_multiple=is_multiple)


def _post_json(url: str, *, headers: dict[str, str], payload: dict[str, Any], service: str) -> tuple[int, dict[str, Any]]:
    try:
        with httpx.Client(timeout=15.0) as client:
            response = client.post(url, headers=headers, json=payload)
    except Exception as exc:
        raise EmailDeliveryError(f"{service} request failed: {exc}") from exc
    body: dict[str, Any] = {}
    try:
        body = response.json() if response.content else {}
    except Exception:
        body = {}
    if response.status_code >= 400:
        errors = body.get("errors") if isinstance(body, dict) else None
        detail = str(body.get("detail") or errors or response.text or response.status_code)
        raise EmailDeliveryError(f"{service} error: {detail}")
    return response.status_code, body


def _send_via_email_service(*, recipients: list[str], subject: str, html: str, text: str | None, is_multiple: bool) -> dict[str, Any]:
    base_url = str(settings.EMAIL_SERVICE_URL or "").strip().rstrip("/")
    token = str(settings.INTERNAL_SERVICE_TOKEN or "").strip()
    if not base_url:
        raise EmailDeliveryError("EMAIL_SERVICE_URL is not configured")
    if not token:
        raise EmailDeliveryError("INTERNAL_SERVICE_TOKEN is not configured")
    _, body = _post_json(
        f"{base_url}/internal/send",
        headers={"X-Internal-Token": token, "Content-Type": "application/json"},
        payload={
            "to": recipients,
            "from": _sender(),
            "subject": subject,
            "html": html,
            "text": text,
            "is_multiple": is_multiple,
        },
        service="email-service",
    )
    return {
        "provider": "email-service",
        "status": "accepted",
        "message": "Email sent through email-service",
        "sent": True,
        "response": body,
    }


def _send_sendgrid(*, recipients: list[str], subject: str, html: str, text: str | None, is_multiple: bool) -> dict[str, Any]:
    api_key = str(settings.SENDGRID_API_KEY or "").strip()
    if not api_key:
        raise EmailDeliveryError("SENDGRID_API_KEY is not configured")
    if is_multiple:
        personalizations = [{"to": [{"email": email}]} for email in recipients]
    else:
        personalizations = [{"to": [{"email": email} for email in recipients]}]
    content = []
    if text:
        content.append({"type": "text/plain", "value": text})
    content.append({"type": "text/html", "value": html})
    status_code, _ = _post_json(
        str(settings.SENDGRID_API_URL),
        headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        payload={
            "personalizations": personalizations,
            "from": {"email": _sender()},
            "subject": subject,
            "content": content,
        },
        service="sendgrid",
    )
    return {
        "provider": "sendgrid",
        "status": "accepted",
        "message": "Email accepted by SendGrid",
        "sent": True,
        "status_code": status_code,
    }


def deliver_mail(
    *,
    to: str | list[str],
    subject: str,
    html: str,
    text: str | None = None,
    is_multiple: bool = False,
) -> dict[str, Any]:
    """Send through the configured provider. Raises EmailDeliveryError on any failure."""
    recipients = _normalize_recipients(to)
    if not recipients:
        raise EmailDeliveryError("No valid recipient email")

    provider = _provider()
    if provider in MOCK_PROVIDERS:
        return _mock_send(recipients=recipients, subject=subject)
    kwargs = {"recipients": recipients, "subject": subject, "html": html, "text": text, "is_multiple": is_multiple}
    if provider == "smtp":
        return _send_smtp(**kwargs)
    if provider in {"service", "email_service"}:
        return _send_via_email_service(**kwargs)
    if provider == "sendgrid":
        return _send_sendgrid(**kwargs)
    raise EmailDeliveryError(f"Unknown EMAIL_PROVIDER: {provider}")


def send_mail(
    to: str | list[str],
    subject: str,
    html: str,
    text: str | None = None,
    *,
    is_multiple: bool = False,
) -> dict[str, Any]:
    """Fire-and-forget mail: skipped in the test environment, failures are logged, never raised."""
    if settings.is_test_env:
        return {"provider": _provider() or "dummy", "status": "skipped", "sent": False, "skipped": True}
    try:
        return deliver_mail(to=to, subject=subject, html=html, text=text, is_multiple=is_multiple)
    except EmailDeliveryError as exc:
        logger.error("Send mail to %s error: %s", to, exc, extra={"metadata": {"subject": subject, "provider": _provider()}})
        return {"provider": _provider(), "status": "failed", "sent": False, "error": str(exc)}


def send_otp_email_message(*, email: str, code: str, purpose: str) -> dict[str, Any]:
    subject_template = str(settings.OTP_EMAIL_SUBJECT_TEMPLATE or "").strip() or "Your verification code: {code}"
    body_template = str(settings.OTP_EMAIL_TEMPLATE or "").strip() or "Your verification code: {code}"
    try:
        subject = subject_template.format(code=code, purpose=purpose)
        html = body_template.format(code=code, purpose=purpose)
    except (KeyError, IndexError, ValueError):
        subject = f"Your verification code: {code}"
        html = f"Your verification code: {code}"
    return deliver_mail(to=email, subject=subject, html=html, text=f"Your verification code: {code}")

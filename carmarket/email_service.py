# carmarket/email_service.py
from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Iterable, List, Optional, Union

import requests

from .config import config

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"

# Messages captured by the "mock" provider (local dev and tests)
outbox: List[dict] = []


def _normalize_list(value: Optional[Union[str, Iterable[str]]]) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        value = [value]
    return [v.strip() for v in value if v and v.strip()]


# =========================
# Providers
# =========================
def _send_via_sendgrid(
    recipients: List[str],
    subject: str,
    html_body: str,
    text_body: Optional[str],
    cc: List[str],
    bcc: List[str],
    reply_to: Optional[str],
) -> bool:
    if not config.SENDGRID_API_KEY:
        logger.error("SENDGRID_API_KEY missing")
        return False

    personalization = {"to": [{"email": x} for x in recipients]}
    if cc:
        personalization["cc"] = [{"email": x} for x in cc]
    if bcc:
        personalization["bcc"] = [{"email": x} for x in bcc]

    payload = {
        "personalizations": [personalization],
        "from": {"email": config.FROM_EMAIL, "name": config.FROM_NAME},
        "subject": subject,
        "content": [],
    }
    if reply_to:
        payload["reply_to"] = {"email": reply_to}
    if text_body:
        payload["content"].append({"type": "text/plain", "value": text_body})
    payload["content"].append({"type": "text/html", "value": html_body or ""})

    try:
        r = requests.post(
            SENDGRID_URL,
            json=payload,
            headers={"Authorization": f"Bearer {config.SENDGRID_API_KEY}"},
            timeout=20,
        )
    except requests.RequestException as e:
        logger.error("SendGrid request failed: %s", e)
        return False

    # SendGrid answers 202 when the message is accepted
    if not (200 <= r.status_code < 300):
        logger.error("SendGrid rejected message (%s): %s", r.status_code, r.text[:300])
        return False
    return True


def _send_via_smtp(
    recipients: List[str],
    subject: str,
    html_body: str,
    text_body: Optional[str],
    cc: List[str],
    bcc: List[str],
    reply_to: Optional[str],
) -> bool:
    if not (config.SMTP_HOST and config.SMTP_USER and config.SMTP_PASSWORD):
        logger.error("SMTP credentials missing")
        return False

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{config.FROM_NAME} <{config.FROM_EMAIL}>"
    msg["To"] = ", ".join(recipients)
    if cc:
        msg["Cc"] = ", ".join(cc)
    if reply_to:
        msg["Reply-To"] = reply_to

    msg.attach(MIMEText(text_body or "", "plain"))
    msg.attach(MIMEText(html_body or "", "html"))

    try:
        with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT, timeout=20) as server:
            if config.SMTP_USE_TLS:
                server.starttls()
            server.login(config.SMTP_USER, config.SMTP_PASSWORD)
            server.sendmail(config.FROM_EMAIL, recipients + cc + bcc, msg.as_string())
    except (smtplib.SMTPException, OSError) as e:
        logger.error("SMTP error: %s", e)
        return False
    return True


def _send_via_mock(
    recipients: List[str],
    subject: str,
    html_body: str,
    text_body: Optional[str],
    cc: List[str],
    bcc: List[str],
    reply_to: Optional[str],
) -> bool:
    outbox.append({
        "to": recipients,
        "cc": cc,
        "bcc": bcc,
        "reply_to": reply_to,
        "subject": subject,
        "html": html_body,
        "text": text_body,
    })
    logger.info("[mock email] to=%s subject=%s", recipients, subject)
    return True


_PROVIDERS = {
    "sendgrid": _send_via_sendgrid,
    "smtp": _send_via_smtp,
    "mock": _send_via_mock,
}


def send_email(
    to: Union[str, Iterable[str]],
    subject: str,
    html_body: str,
    text_body: Optional[str] = None,
    cc: Optional[Union[str, Iterable[str]]] = None,
    bcc: Optional[Union[str, Iterable[str]]] = None,
    reply_to: Optional[str] = None,
) -> bool:
    """
    Send one message through the configured provider.
    Never raises: callers treat email as a best-effort side effect.
    """
    recipients = _normalize_list(to)
    if not recipients:
        logger.warning("send_email called without recipient (subject=%r)", subject)
        return False

    provider = _PROVIDERS.get(config.EMAIL_PROVIDER)
    if provider is None:
        logger.error("Unknown EMAIL_PROVIDER %r", config.EMAIL_PROVIDER)
        return False

    ok = provider(
        recipients, subject, html_body, text_body,
        _normalize_list(cc), _normalize_list(bcc), reply_to,
    )
    if ok:
        logger.info("email sent to %s via %s", recipients, config.EMAIL_PROVIDER)
    return ok

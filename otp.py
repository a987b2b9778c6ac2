"""
One-time codes for phone login and password reset.

Codes are stored in the "otps" collection and dispatched out of band.
Several codes may be outstanding for one identifier (repeated "resend"
clicks); verification takes the newest record whose digits match, and a
successful verification consumes every outstanding code of that purpose
for the identifier.
"""
import logging
import os
import secrets
import smtplib
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage

import requests

import database
from schemas import OTP

logger = logging.getLogger(__name__)

TTL = {
    "login": timedelta(minutes=5),
    "password_reset": timedelta(minutes=15),
}

FAST2SMS_URL = "https://www.fast2sms.com/dev/bulkV2"
NOTIFY_TIMEOUT_SECONDS = 10


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def issue(identifier: str, purpose: str = "login") -> str:
    code = generate_code()
    now = utcnow()
    record = OTP(identifier=identifier, purpose=purpose, code=code, expires_at=now + TTL[purpose]).model_dump()
    record["created_at"] = now
    record["updated_at"] = now
    database.get_db()["otps"].insert_one(record)
    return code


def verify(identifier: str, code: str, purpose: str = "login") -> bool:
    otps = database.get_db()["otps"]
    # match and consume in one step; a concurrent verify of the same code gets None
    record = otps.find_one_and_delete(
        {"identifier": identifier, "purpose": purpose, "code": code},
        sort=[("created_at", -1), ("_id", -1)],
    )
    if not record:
        return False
    if utcnow() > _aware(record["expires_at"]):
        return False
    otps.delete_many({"identifier": identifier, "purpose": purpose})
    return True


# Dispatch. Both senders run as background tasks and never raise.

def send_sms(phone: str, code: str):
    api_key = os.getenv("FAST2SMS_API_KEY")
    if not api_key:
        logger.info("[MOCK SMS] To: %s, OTP: %s", phone, code)
        return
    try:
        resp = requests.get(
            FAST2SMS_URL,
            headers={"authorization": api_key},
            params={"variables_values": code, "route": "otp", "numbers": phone},
            timeout=NOTIFY_TIMEOUT_SECONDS,
        )
        data = resp.json()
        if data.get("return"):
            logger.info("SMS sent to %s", phone)
        else:
            logger.error("Fast2SMS error for %s: %s", phone, data)
    except (requests.RequestException, ValueError):
        logger.exception("Failed to send SMS to %s", phone)


def send_email(email: str, code: str):
    host = os.getenv("SMTP_HOST")
    if not host:
        logger.info("[MOCK EMAIL] To: %s, reset code: %s", email, code)
        return
    msg = EmailMessage()
    msg["Subject"] = "Your password reset code"
    msg["From"] = os.getenv("MAIL_FROM", "no-reply@localhost")
    msg["To"] = email
    msg.set_content(f"Your password reset code is {code}. It expires in 15 minutes.")
    try:
        with smtplib.SMTP(host, int(os.getenv("SMTP_PORT", "587")), timeout=NOTIFY_TIMEOUT_SECONDS) as smtp:
            smtp.starttls()
            if os.getenv("SMTP_USER"):
                smtp.login(os.getenv("SMTP_USER"), os.getenv("SMTP_PASSWORD", ""))
            smtp.send_message(msg)
        logger.info("Reset code mailed to %s", email)
    except (smtplib.SMTPException, OSError):
        logger.exception("Failed to send reset code to %s", email)

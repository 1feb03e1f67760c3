"""
One-time codes for email verification and password reset.

Documents in the "otps" collection carry a purpose:
- "verify": 6-digit code emailed during registration
- "verified": marker left by a successful verification, consumed by register
- "reset": 6-digit password-reset code
"""

import logging
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import database
import mailer
from errors import EmailDeliveryError

logger = logging.getLogger(__name__)

COLLECTION = "otps"

OTP_TTL_MINUTES = int(os.getenv("OTP_TTL_MINUTES", "15"))
# Codes that expired within this window are still accepted for verification
EXPIRY_GRACE = timedelta(minutes=5)
VERIFIED_TTL = timedelta(minutes=30)


def _as_utc(value: Optional[datetime]) -> datetime:
    if value is None:
        return datetime.fromtimestamp(0, timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def generate_otp() -> str:
    return str(100000 + secrets.randbelow(900000))


def save_otp(email: str, otp: str, purpose: str = "verify", now: Optional[datetime] = None) -> None:
    """Replace any outstanding code of this purpose for the email."""
    email = email.strip().lower()
    now = now or database.now_utc()
    database.delete_documents(COLLECTION, {"email": email, "purpose": purpose})
    database.create_document(COLLECTION, {
        "email": email,
        "otp": otp,
        "purpose": purpose,
        "created_at": now,
        "expires_at": now + timedelta(minutes=OTP_TTL_MINUTES),
    })
    logger.debug(f"OTP for {email}: {otp} (expires in {OTP_TTL_MINUTES} minutes)")


def verify_otp(email: str, otp: str, now: Optional[datetime] = None) -> bool:
    """Check a registration code.

    All matching codes are deleted whatever the outcome. On success a
    "verified" marker is stored for register_user to consume.
    """
    email = email.strip().lower()
    otp = otp.strip()
    now = now or database.now_utc()
    matches = database.get_documents(COLLECTION, {"email": email, "otp": otp, "purpose": "verify"})
    if not matches:
        logger.info(f"No OTP records found for {email}")
        return False

    valid = False
    for record in matches:
        expires_at = _as_utc(record.get("expires_at"))
        if expires_at > now - EXPIRY_GRACE:
            valid = True
        database.delete_document(COLLECTION, record["_id"])

    if valid:
        database.delete_documents(COLLECTION, {"email": email, "purpose": "verified"})
        database.create_document(COLLECTION, {
            "email": email,
            "purpose": "verified",
            "created_at": now,
            "expires_at": now + VERIFIED_TTL,
        })
    else:
        logger.info(f"No valid or recently expired OTP found for {email}")
    return valid


def consume_verified_email(email: str, now: Optional[datetime] = None) -> bool:
    email = email.strip().lower()
    now = now or database.now_utc()
    markers = database.get_documents(COLLECTION, {"email": email, "purpose": "verified"})
    database.delete_documents(COLLECTION, {"email": email, "purpose": "verified"})
    return any(_as_utc(m.get("expires_at")) > now for m in markers)


def create_and_send_otp(email: str) -> None:
    """Save a fresh code before emailing it; remove it again if delivery fails."""
    email = email.strip().lower()
    otp = generate_otp()
    save_otp(email, otp)
    if not mailer.send_otp_email(email, otp, OTP_TTL_MINUTES):
        database.delete_documents(COLLECTION, {"email": email, "otp": otp, "purpose": "verify"})
        raise EmailDeliveryError("Failed to send verification code. Please try again.")


def create_and_send_reset_code(email: str) -> None:
    email = email.strip().lower()
    code = generate_otp()
    save_otp(email, code, purpose="reset")
    if not mailer.send_password_reset_email(email, code, OTP_TTL_MINUTES):
        database.delete_documents(COLLECTION, {"email": email, "purpose": "reset"})
        raise EmailDeliveryError("Failed to send password reset email. Please try again.")


def check_reset_code(email: str, code: str, consume: bool = False, now: Optional[datetime] = None) -> bool:
    """Reset codes get no expiry grace."""
    email = email.strip().lower()
    now = now or database.now_utc()
    record = database.find_document(COLLECTION, {"email": email, "otp": code.strip(), "purpose": "reset"})
    if record is None:
        return False
    valid = _as_utc(record.get("expires_at")) > now
    if consume or not valid:
        database.delete_document(COLLECTION, record["_id"])
    return valid

"""One-time code issuing and verification."""
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.errors import ConflictError
from app.models.otp_code import OneTimeCode, OtpPurpose
from app.services.auth import normalize_email

log = logging.getLogger("uvicorn.error")

CODE_MIN = 100000
CODE_MAX = 999999


def generate_code() -> str:
    """Uniform 6-digit code; the range excludes leading zeros."""
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


def _normalize_code(raw: str | None) -> str:
    """Return stripped code, or empty string if not exactly 6 digits."""
    s = (raw or "").strip()
    if len(s) != 6 or not s.isdigit():
        return ""
    return s


class OtpService:
    def __init__(self, db: Session, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()

    def issue(self, email: str, purpose: OtpPurpose, *, commit: bool = True) -> str:
        """Invalidate unused codes for (email, purpose) and store a fresh one.

        With commit=False the caller owns the transaction (signup bundles the
        first code with the pending account row).
        """
        email = normalize_email(email)
        now = datetime.now(timezone.utc)
        self.db.execute(
            update(OneTimeCode)
            .where(
                OneTimeCode.email == email,
                OneTimeCode.purpose == purpose,
                OneTimeCode.used.is_(False),
            )
            .values(used=True)
            .execution_options(synchronize_session=False)
        )
        code = generate_code()
        self.db.add(
            OneTimeCode(
                email=email,
                code=code,
                purpose=purpose,
                used=False,
                expires_at=now + timedelta(minutes=self.settings.otp_expire_minutes),
            )
        )
        try:
            self.db.flush()
        except IntegrityError:
            # Another request issued a code for the same pair concurrently
            self.db.rollback()
            raise ConflictError(
                "A verification code was just issued for this email. Please try again.",
                code="OTP_CONFLICT",
            )
        if commit:
            self.db.commit()
        log.info("[OTP] Issued %s code for %s", purpose.value, email)
        return code

    def verify(self, email: str, code: str, purpose: OtpPurpose, *, commit: bool = True) -> bool:
        """Consume a live code. Only one caller can ever succeed for a given code."""
        email = normalize_email(email)
        code = _normalize_code(code)
        if not email or not code:
            return False
        now = datetime.now(timezone.utc)
        record = (
            self.db.query(OneTimeCode)
            .filter(
                OneTimeCode.email == email,
                OneTimeCode.code == code,
                OneTimeCode.purpose == purpose,
                OneTimeCode.used.is_(False),
                OneTimeCode.expires_at > now,
            )
            .order_by(OneTimeCode.created_at.desc(), OneTimeCode.id.desc())
            .first()
        )
        if record is None:
            return False
        # Compare-and-swap on `used`
        result = self.db.execute(
            update(OneTimeCode)
            .where(OneTimeCode.id == record.id, OneTimeCode.used.is_(False))
            .values(used=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            return False
        self.db.expire(record)
        if commit:
            self.db.commit()
        return True

    def purge_expired_or_used(self) -> int:
        now = datetime.now(timezone.utc)
        deleted = (
            self.db.query(OneTimeCode)
            .filter(or_(OneTimeCode.expires_at < now, OneTimeCode.used.is_(True)))
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted

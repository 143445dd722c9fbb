"""One-time numeric codes bound to an email and a purpose."""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Enum as SQLEnum, Index, text
from sqlalchemy.sql import func

from app.database import Base


class OtpPurpose(str, enum.Enum):
    signup = "SIGNUP"
    password_reset = "PASSWORD_RESET"
    email_verification = "EMAIL_VERIFICATION"


class OneTimeCode(Base):
    __tablename__ = "otp_codes"
    __table_args__ = (
        Index("ix_otp_codes_email_purpose", "email", "purpose"),
        # At most one unused code per (email, purpose); issuing invalidates the previous one first
        Index(
            "uq_otp_codes_active",
            "email",
            "purpose",
            unique=True,
            postgresql_where=text("NOT used"),
            sqlite_where=text("NOT used"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False)
    code = Column(String(6), nullable=False)
    purpose = Column(SQLEnum(OtpPurpose), nullable=False)

    used = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

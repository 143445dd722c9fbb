"""Auth and account schemas."""
from datetime import datetime

from pydantic import AliasChoices, BaseModel, EmailStr, Field, field_validator

from app.config import get_settings
from app.models.account import AccountRole


def _check_password(v: str) -> str:
    min_len = get_settings().password_min_length
    if len(v or "") < min_len:
        raise ValueError(f"Password must be at least {min_len} characters")
    return v


def _check_name(v: str) -> str:
    v = (v or "").strip()
    if not v:
        raise ValueError("Name is required")
    return v


class SignupRequest(BaseModel):
    email: EmailStr
    name: str
    password: str
    # Optional approver; when omitted the configured default approver (if any) is used
    admin_email: EmailStr | None = Field(default=None, validation_alias=AliasChoices("admin_email", "adminEmail"))

    @field_validator("name")
    @classmethod
    def name_present(cls, v: str) -> str:
        return _check_name(v)

    @field_validator("password")
    @classmethod
    def password_long_enough(cls, v: str) -> str:
        return _check_password(v)

    @field_validator("admin_email", mode="before")
    @classmethod
    def blank_admin_email(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp: str = Field(validation_alias=AliasChoices("otp", "code"))


class ResendOtpRequest(BaseModel):
    email: EmailStr


class ApproveRequest(BaseModel):
    pending_user_id: str = Field(validation_alias=AliasChoices("pending_user_id", "pendingUserId"))


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class CreateAccountRequest(BaseModel):
    email: EmailStr
    name: str
    password: str
    role: AccountRole

    @field_validator("name")
    @classmethod
    def name_present(cls, v: str) -> str:
        return _check_name(v)

    @field_validator("password")
    @classmethod
    def password_long_enough(cls, v: str) -> str:
        return _check_password(v)


class AccountResponse(BaseModel):
    id: str
    email: str
    name: str
    role: AccountRole
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_login: datetime | None = None

    class Config:
        from_attributes = True


class PendingAccountResponse(BaseModel):
    """Admin view of a signup request. The id is the approval token: never return it to the signer."""
    id: str
    email: str
    name: str
    role: AccountRole
    approver_email: str | None = None
    otp_verified: bool
    admin_approved: bool
    created_at: datetime | None = None
    expires_at: datetime

    class Config:
        from_attributes = True


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    account: AccountResponse

"""Email delivery check: send a test message of each kind and probe the transport."""
from enum import Enum

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr

from app.config import get_settings
from app.dependencies import Principal, require_elevated
from app.errors import ApiError
from app.models.otp_code import OtpPurpose
from app.schemas.common import success
from app.services.notifications import NotificationDispatcher, get_notifier
from app.services.otp import generate_code

router = APIRouter(prefix="/email", tags=["email"])


class TestEmailType(str, Enum):
    test = "test"
    otp = "otp"
    welcome = "welcome"
    approval = "approval"


class TestEmailBody(BaseModel):
    to: EmailStr | None = None
    type: TestEmailType = TestEmailType.test
    name: str | None = None


@router.post("/test")
def send_test_email(
    body: TestEmailBody,
    notifier: NotificationDispatcher = Depends(get_notifier),
    principal: Principal = Depends(require_elevated),
):
    """Send a sample email. Defaults to the caller's own address."""
    to_email = str(body.to or principal.email).strip().lower()
    name = body.name or "Test User"
    if body.type == TestEmailType.otp:
        # Throwaway code, not stored
        result = notifier.send_otp(to_email, name, generate_code(), OtpPurpose.email_verification)
    elif body.type == TestEmailType.welcome:
        result = notifier.send_welcome(to_email, name)
    elif body.type == TestEmailType.approval:
        base = get_settings().public_base_url.rstrip("/")
        result = notifier.send_approval_request(to_email, "new.user@example.com", name, f"{base}/approve?token=test")
    else:
        result = notifier.send_test(to_email)
    if not result.success:
        raise ApiError(
            "Failed to send email",
            code="EMAIL_SEND_FAILED",
            details={"error": result.error},
        )
    return success(
        {"to": to_email, "type": body.type, "message_id": result.message_id},
        f"Test email sent to {to_email}",
    )


@router.get("/health")
def email_health(
    notifier: NotificationDispatcher = Depends(get_notifier),
    principal: Principal = Depends(require_elevated),
):
    health = notifier.check_health()
    payload = {"healthy": health.healthy, "config": health.config}
    if health.error:
        payload["error"] = health.error
    return success(payload)

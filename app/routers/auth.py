"""Signup, OTP verification, approval and login."""
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import get_db
from app.dependencies import Principal, get_current_account, require_elevated
from app.errors import Unauthorized, ValidationFailed
from app.models.account import Account, AccountRole
from app.schemas.auth import (
    AccountResponse,
    ApproveRequest,
    LoginRequest,
    ResendOtpRequest,
    SignupRequest,
    Token,
    VerifyOtpRequest,
)
from app.schemas.common import success, success_response
from app.services.accounts import AccountStore
from app.services.approval import ApprovalGate, VerificationStatus
from app.services.audit_log import create_log, request_context, CATEGORY_FAILED_ATTEMPT
from app.services.auth import create_access_token, normalize_email
from app.services.notifications import NotificationDispatcher, get_notifier
from app.services.pending_accounts import PendingAccountStore

router = APIRouter(tags=["auth"])


@router.post("/signup")
def signup(
    request: Request,
    data: SignupRequest,
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    settings = get_settings()
    store = PendingAccountStore(db, notifier, settings)
    result = store.create(
        data.email,
        data.name,
        data.password,
        # Self-service signups never get the elevated role
        role=AccountRole.admin_user,
        approver_email=data.admin_email or settings.signup_default_approver_email or None,
        context=request_context(request),
    )
    pending = result.pending
    payload = {
        "email": pending.email,
        "name": pending.name,
        "created_at": pending.created_at,
        "status": VerificationStatus.otp_sent,
        "email_sent": result.email_sent,
    }
    if result.warning:
        payload["warning"] = result.warning
    return success_response(payload, "Signup successful. Please verify your email.", status_code=201)


@router.post("/verify-otp")
def verify_otp(
    request: Request,
    data: VerifyOtpRequest,
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    gate = ApprovalGate(db, notifier)
    outcome = gate.verify_and_route(data.email, data.otp, context=request_context(request))
    if not outcome.verified:
        raise ValidationFailed("Invalid or expired verification code", code="INVALID_OTP")
    payload = {
        "verified": True,
        "status": outcome.status,
        "email": outcome.pending.email,
        "name": outcome.pending.name,
        "email_sent": outcome.email_sent,
    }
    if outcome.account is not None:
        payload["account"] = AccountResponse.model_validate(outcome.account)
    if outcome.status == VerificationStatus.approved:
        message = "Email verified and account activated successfully!"
    else:
        message = "Email verified successfully. Your account is pending admin approval."
    return success(payload, message)


@router.post("/resend-otp")
def resend_otp(
    data: ResendOtpRequest,
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    sent = PendingAccountStore(db, notifier).resend_otp(data.email)
    payload = {"email": normalize_email(data.email), "email_sent": sent}
    if not sent:
        return success(payload, "A new verification code was created but the email could not be sent. Please try again shortly.")
    return success(payload, "Verification code has been resent to your email.")


def _approved_payload(result) -> dict:
    return {
        "email": result.account.email,
        "name": result.account.name,
        "account": AccountResponse.model_validate(result.account),
        "email_sent": result.email_sent,
    }


@router.get("/approve")
def approve_by_link(
    request: Request,
    token: str | None = Query(None),
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """Approval link emailed to the approver. Possession of the token authorizes."""
    token = (token or "").strip()
    if not token:
        raise ValidationFailed("Missing token", code="MISSING_TOKEN")
    result = ApprovalGate(db, notifier).promote(token, context=request_context(request))
    return success(_approved_payload(result), "User approved successfully")


@router.post("/approve")
def approve_by_admin(
    request: Request,
    data: ApproveRequest,
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
    principal: Principal = Depends(require_elevated),
):
    pending_id = data.pending_user_id.strip()
    if not pending_id:
        raise ValidationFailed("Missing pending user ID", code="MISSING_ID")
    result = ApprovalGate(db, notifier).promote(
        pending_id,
        actor_account_id=principal.id,
        actor_email=principal.email,
        context=request_context(request),
    )
    return success(_approved_payload(result), "User approved successfully")


@router.post("/login")
def login(request: Request, data: LoginRequest, db: Session = Depends(get_db)):
    account = AccountStore(db).authenticate(data.email, data.password)
    if account is None:
        create_log(
            db,
            CATEGORY_FAILED_ATTEMPT,
            "Login failed",
            f"Failed login attempt for email: {normalize_email(data.email)}.",
            actor_email=normalize_email(data.email),
            meta={"reason": "invalid_email_or_password"},
            **request_context(request),
        )
        db.commit()
        raise Unauthorized("Invalid email or password")
    token = create_access_token(account.id, account.email, AccountRole(account.role))
    return success(Token(access_token=token, account=AccountResponse.model_validate(account)), "Signed in")


@router.get("/me")
def me(account: Account = Depends(get_current_account)):
    return success(AccountResponse.model_validate(account))

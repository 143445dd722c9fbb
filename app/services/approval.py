"""Approval gate: OTP verification routing and promotion of pending accounts into accounts.

Lifecycle of a PendingAccount:

    created -> awaiting_otp -> awaiting_approval -> promoted
                            \\-> promoted (no approver: auto path)
    awaiting_otp / awaiting_approval -> expired (purged)
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import urlencode

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.errors import ConflictError, InvalidStateError, NotFoundError
from app.models.account import Account
from app.models.otp_code import OtpPurpose
from app.models.pending_account import PendingAccount
from app.services.audit_log import create_log, CATEGORY_ACCOUNT_LIFECYCLE, CATEGORY_FAILED_ATTEMPT
from app.services.auth import normalize_email
from app.services.notifications import NotificationDispatcher
from app.services.otp import OtpService
from app.services.pending_accounts import PendingAccountStore

log = logging.getLogger("uvicorn.error")


class VerificationStatus(str, enum.Enum):
    otp_sent = "otp_sent"
    pending_admin_approval = "pending_admin_approval"
    approved = "approved"


@dataclass
class VerificationOutcome:
    verified: bool
    status: VerificationStatus = VerificationStatus.otp_sent
    pending: PendingAccount | None = None
    account: Account | None = None
    email_sent: bool = True


@dataclass
class PromotionResult:
    account: Account
    email_sent: bool


class ApprovalGate:
    def __init__(
        self,
        db: Session,
        notifier: NotificationDispatcher | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.notifier = notifier or NotificationDispatcher(self.settings)
        self.otp = OtpService(db, self.settings)
        self.pending_store = PendingAccountStore(db, self.notifier, self.settings)

    def approval_link(self, pending: PendingAccount) -> str:
        base = self.settings.public_base_url.rstrip("/")
        return f"{base}/approve?{urlencode({'token': pending.id})}"

    def verify_and_route(self, email: str, code: str, *, context: dict | None = None) -> VerificationOutcome:
        """Consume the SIGNUP code, mark the request verified, then ask the approver or promote."""
        email = normalize_email(email)
        pending = self.pending_store.find_by_email(email)
        if pending is None or not self.otp.verify(email, code, OtpPurpose.signup, commit=False):
            self.db.rollback()
            create_log(
                self.db,
                CATEGORY_FAILED_ATTEMPT,
                "Email verification failed",
                f"Invalid or expired verification code for {email}.",
                actor_email=email,
                meta={"reason": "no_pending_request" if pending is None else "invalid_or_expired_code"},
                **(context or {}),
            )
            self.db.commit()
            return VerificationOutcome(verified=False, pending=pending)

        pending = self.pending_store.mark_otp_verified(email, commit=False)
        create_log(
            self.db,
            CATEGORY_ACCOUNT_LIFECYCLE,
            "Email verified",
            f"Signup email verified for {email}.",
            actor_email=email,
            meta={"pending_id": pending.id},
            **(context or {}),
        )
        self.db.commit()
        self.db.refresh(pending)

        if pending.approver_email:
            sent = self.notifier.send_approval_request(
                pending.approver_email,
                pending.email,
                pending.name,
                self.approval_link(pending),
            )
            if not sent.success:
                log.warning("[Auth] Approval request to %s not sent: %s", pending.approver_email, sent.error)
            return VerificationOutcome(
                verified=True,
                status=VerificationStatus.pending_admin_approval,
                pending=pending,
                email_sent=sent.success,
            )

        promoted = self.promote(pending.id, context=context)
        return VerificationOutcome(
            verified=True,
            status=VerificationStatus.approved,
            pending=pending,
            account=promoted.account,
            email_sent=promoted.email_sent,
        )

    def promote(
        self,
        pending_id: str,
        *,
        actor_account_id: str | None = None,
        actor_email: str | None = None,
        context: dict | None = None,
    ) -> PromotionResult:
        """Create the Account for a verified, unapproved, unexpired request. At most once per request."""
        now = datetime.now(timezone.utc)
        # Conditional flip of admin_approved claims the request inside this transaction;
        # a concurrent promotion blocks on the row and then matches nothing.
        claimed = self.db.execute(
            update(PendingAccount)
            .where(
                PendingAccount.id == pending_id,
                PendingAccount.otp_verified.is_(True),
                PendingAccount.admin_approved.is_(False),
                PendingAccount.expires_at > now,
            )
            .values(admin_approved=True)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            self.db.rollback()
            self._raise_for_state(pending_id, now)

        pending = (
            self.db.query(PendingAccount)
            .filter(PendingAccount.id == pending_id)
            .populate_existing()
            .one()
        )
        account = Account(
            email=pending.email,
            name=pending.name,
            hashed_password=pending.hashed_password,
            role=pending.role,
            is_active=True,
        )
        self.db.add(account)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("User with this email already exists", code="USER_EXISTS")
        create_log(
            self.db,
            CATEGORY_ACCOUNT_LIFECYCLE,
            "Account approved",
            f"Pending signup {pending.id} promoted to account {account.id} ({account.email}).",
            actor_account_id=actor_account_id,
            actor_email=actor_email,
            meta={"pending_id": pending.id, "account_id": account.id, "auto": actor_account_id is None and actor_email is None},
            **(context or {}),
        )
        self.db.commit()
        self.db.refresh(account)

        sent = self.notifier.send_welcome(account.email, account.name)
        if not sent.success:
            log.warning("[Auth] Welcome email to %s not sent: %s", account.email, sent.error)
        return PromotionResult(account=account, email_sent=sent.success)

    def _raise_for_state(self, pending_id: str, now: datetime) -> None:
        pending = self.db.query(PendingAccount).filter(PendingAccount.id == pending_id).first()
        if pending is None:
            raise NotFoundError("Invalid or expired token", code="INVALID_TOKEN")
        if pending.admin_approved:
            raise InvalidStateError("User already approved", code="ALREADY_APPROVED")
        if pending.is_expired(now):
            raise InvalidStateError("Signup request has expired", code="REQUEST_EXPIRED")
        if not pending.otp_verified:
            raise InvalidStateError("Email not verified", code="EMAIL_NOT_VERIFIED")
        raise InvalidStateError("Failed to approve user", code="APPROVAL_FAILED")

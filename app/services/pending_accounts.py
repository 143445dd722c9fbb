"""Pending account store: signup requests awaiting email verification and approval."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.errors import ConflictError, InvalidStateError, NotFoundError
from app.models.account import Account, AccountRole
from app.models.otp_code import OtpPurpose
from app.models.pending_account import PendingAccount
from app.services.audit_log import create_log, CATEGORY_ACCOUNT_LIFECYCLE
from app.services.auth import get_password_hash, normalize_email
from app.services.notifications import NotificationDispatcher
from app.services.otp import OtpService

log = logging.getLogger("uvicorn.error")

EMAIL_NOT_SENT_WARNING = "We could not send the verification email. Please request a new code."


@dataclass
class SignupResult:
    pending: PendingAccount
    email_sent: bool
    warning: str | None = None


class PendingAccountStore:
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

    def _live(self):
        return self.db.query(PendingAccount).filter(PendingAccount.expires_at > datetime.now(timezone.utc))

    def create(
        self,
        email: str,
        name: str,
        password: str,
        role: AccountRole = AccountRole.admin_user,
        approver_email: str | None = None,
        *,
        context: dict | None = None,
    ) -> SignupResult:
        """Store the request and its first SIGNUP code atomically, then email the code.

        A failed email does not undo the signup; the user can ask for a resend.
        """
        email = normalize_email(email)
        approver_email = normalize_email(approver_email) or None
        if self.db.query(Account.id).filter(Account.email == email).first():
            raise ConflictError("User with this email already exists", code="USER_EXISTS")
        if self._live().filter(PendingAccount.email == email).first():
            raise ConflictError("A signup request with this email is already pending", code="SIGNUP_PENDING")

        now = datetime.now(timezone.utc)
        pending = PendingAccount(
            email=email,
            name=name.strip(),
            hashed_password=get_password_hash(password),
            role=role,
            approver_email=approver_email,
            otp_verified=False,
            admin_approved=False,
            created_at=now,
            expires_at=now + timedelta(hours=self.settings.pending_account_expire_hours),
        )
        self.db.add(pending)
        self.db.flush()
        code = self.otp.issue(email, OtpPurpose.signup, commit=False)
        create_log(
            self.db,
            CATEGORY_ACCOUNT_LIFECYCLE,
            "Signup requested",
            f"Signup request created for {email}.",
            actor_email=email,
            meta={"pending_id": pending.id, "role": role, "approver_email": approver_email},
            **(context or {}),
        )
        self.db.commit()
        self.db.refresh(pending)

        sent = self.notifier.send_otp(email, pending.name, code, OtpPurpose.signup)
        if not sent.success:
            log.warning("[Auth] Verification email not sent to %s: %s", email, sent.error)
            return SignupResult(pending=pending, email_sent=False, warning=EMAIL_NOT_SENT_WARNING)
        return SignupResult(pending=pending, email_sent=True)

    def find_by_id(self, pending_id: str) -> PendingAccount | None:
        if not pending_id:
            return None
        return self._live().filter(PendingAccount.id == pending_id).first()

    def find_by_email(self, email: str) -> PendingAccount | None:
        """Most recent live request for the email."""
        return (
            self._live()
            .filter(PendingAccount.email == normalize_email(email))
            .order_by(PendingAccount.created_at.desc())
            .first()
        )

    def mark_otp_verified(self, email: str, *, commit: bool = True) -> PendingAccount:
        pending = self.find_by_email(email)
        if pending is None:
            raise NotFoundError("No pending signup found for this email", code="NOT_FOUND")
        pending.otp_verified = True
        if commit:
            self.db.commit()
            self.db.refresh(pending)
        else:
            self.db.flush()
        return pending

    def list_awaiting_approval(self) -> list[PendingAccount]:
        return (
            self._live()
            .filter(PendingAccount.otp_verified.is_(True), PendingAccount.admin_approved.is_(False))
            .order_by(PendingAccount.created_at.desc())
            .all()
        )

    def resend_otp(self, email: str) -> bool:
        """Reissue the SIGNUP code for an unverified request. Returns whether the email went out."""
        pending = self.find_by_email(email)
        if pending is None:
            raise NotFoundError("No pending signup found for this email", code="NOT_FOUND")
        if pending.otp_verified:
            raise InvalidStateError("Email already verified", code="ALREADY_VERIFIED")
        code = self.otp.issue(pending.email, OtpPurpose.signup)
        sent = self.notifier.send_otp(pending.email, pending.name, code, OtpPurpose.signup)
        if not sent.success:
            log.warning("[Auth] Resend verification email not sent to %s: %s", pending.email, sent.error)
        return sent.success

    def purge_expired(self) -> int:
        """Delete requests past expires_at. Idempotent; a no-op when the datastore is down."""
        try:
            deleted = (
                self.db.query(PendingAccount)
                .filter(PendingAccount.expires_at <= datetime.now(timezone.utc))
                .delete(synchronize_session=False)
            )
            self.db.commit()
        except OperationalError as e:
            self.db.rollback()
            log.warning("[Cleanup] Pending account purge skipped, datastore unavailable: %s", e.orig)
            return 0
        return deleted

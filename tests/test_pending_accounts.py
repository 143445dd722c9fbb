from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import Session

from app.errors import ConflictError, InvalidStateError, NotFoundError
from app.models.account import AccountRole
from app.models.audit_log import AuditLog
from app.models.otp_code import OneTimeCode, OtpPurpose
from app.models.pending_account import PendingAccount
from app.services.accounts import AccountStore
from app.services.audit_log import CATEGORY_ACCOUNT_LIFECYCLE
from app.services.auth import verify_password
from app.services.pending_accounts import PendingAccountStore
from conftest import FakeNotifier, USER_PASSWORD


EMAIL = "new.user@example.com"


@pytest.fixture()
def store(db: Session, notifier: FakeNotifier) -> PendingAccountStore:
    return PendingAccountStore(db, notifier)


def _expire(db: Session, pending: PendingAccount) -> None:
    pending.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    db.commit()


def test_create_then_find_by_email(store: PendingAccountStore, notifier: FakeNotifier) -> None:
    result = store.create(" New.User@Example.com ", "New User", USER_PASSWORD)

    assert result.email_sent is True
    assert result.warning is None
    found = store.find_by_email(EMAIL)
    assert found is not None
    assert found.id == result.pending.id
    assert found.otp_verified is False
    assert found.admin_approved is False
    assert found.role == AccountRole.admin_user
    assert verify_password(USER_PASSWORD, found.hashed_password)
    assert found.hashed_password != USER_PASSWORD

    to_email, info = notifier.last("otp")
    assert to_email == EMAIL
    assert info["purpose"] == OtpPurpose.signup
    assert len(info["code"]) == 6


def test_create_stores_code_and_audit_entry(db: Session, store: PendingAccountStore) -> None:
    store.create(EMAIL, "New User", USER_PASSWORD, context={"ip_address": "10.0.0.1", "user_agent": "pytest"})

    codes = db.query(OneTimeCode).filter(OneTimeCode.email == EMAIL).all()
    assert len(codes) == 1
    assert codes[0].purpose == OtpPurpose.signup
    entry = db.query(AuditLog).filter(AuditLog.category == CATEGORY_ACCOUNT_LIFECYCLE).one()
    assert entry.actor_email == EMAIL
    assert entry.ip_address == "10.0.0.1"


def test_second_signup_while_pending_conflicts(store: PendingAccountStore) -> None:
    store.create(EMAIL, "New User", USER_PASSWORD)

    with pytest.raises(ConflictError) as exc:
        store.create(EMAIL, "New User", USER_PASSWORD)
    assert exc.value.code == "SIGNUP_PENDING"


def test_signup_for_existing_account_conflicts(db: Session, store: PendingAccountStore) -> None:
    AccountStore(db).create(EMAIL, "Existing", USER_PASSWORD, AccountRole.admin_user)

    with pytest.raises(ConflictError) as exc:
        store.create(EMAIL, "New User", USER_PASSWORD)
    assert exc.value.code == "USER_EXISTS"


def test_email_failure_does_not_undo_signup(store: PendingAccountStore, notifier: FakeNotifier) -> None:
    notifier.fail = True

    result = store.create(EMAIL, "New User", USER_PASSWORD)

    assert result.email_sent is False
    assert result.warning
    assert store.find_by_email(EMAIL) is not None


def test_expired_request_is_invisible(db: Session, store: PendingAccountStore) -> None:
    pending = store.create(EMAIL, "New User", USER_PASSWORD).pending
    _expire(db, pending)

    assert store.find_by_email(EMAIL) is None
    assert store.find_by_id(pending.id) is None
    # An expired request no longer blocks a fresh signup
    again = store.create(EMAIL, "New User", USER_PASSWORD)
    assert store.find_by_email(EMAIL).id == again.pending.id


def test_mark_otp_verified(store: PendingAccountStore) -> None:
    store.create(EMAIL, "New User", USER_PASSWORD)

    pending = store.mark_otp_verified(EMAIL)

    assert pending.otp_verified is True
    assert store.list_awaiting_approval()[0].email == EMAIL


def test_mark_otp_verified_without_request(store: PendingAccountStore) -> None:
    with pytest.raises(NotFoundError):
        store.mark_otp_verified("nobody@example.com")


def test_resend_replaces_code(db: Session, store: PendingAccountStore, notifier: FakeNotifier) -> None:
    store.create(EMAIL, "New User", USER_PASSWORD)

    assert store.resend_otp(EMAIL) is True

    assert notifier.kinds() == ["otp", "otp"]
    live = db.query(OneTimeCode).filter(OneTimeCode.email == EMAIL, OneTimeCode.used.is_(False)).all()
    assert len(live) == 1
    assert live[0].code == notifier.codes[EMAIL]


def test_resend_after_verification_is_rejected(store: PendingAccountStore) -> None:
    store.create(EMAIL, "New User", USER_PASSWORD)
    store.mark_otp_verified(EMAIL)

    with pytest.raises(InvalidStateError) as exc:
        store.resend_otp(EMAIL)
    assert exc.value.code == "ALREADY_VERIFIED"


def test_resend_without_request(store: PendingAccountStore) -> None:
    with pytest.raises(NotFoundError):
        store.resend_otp(EMAIL)


def test_purge_expired(db: Session, store: PendingAccountStore) -> None:
    stale = store.create("stale@example.com", "Stale", USER_PASSWORD).pending
    store.create(EMAIL, "New User", USER_PASSWORD)
    _expire(db, stale)

    assert store.purge_expired() == 1
    assert store.purge_expired() == 0
    assert [p.email for p in db.query(PendingAccount).all()] == [EMAIL]

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import Session

from app.errors import ConflictError, InvalidStateError, NotFoundError
from app.models.account import Account, AccountRole
from app.models.pending_account import PendingAccount
from app.services.accounts import AccountStore
from app.services.approval import ApprovalGate, VerificationStatus
from app.services.pending_accounts import PendingAccountStore
from conftest import FakeNotifier, USER_PASSWORD


EMAIL = "applicant@example.com"
APPROVER = "boss@example.com"


@pytest.fixture()
def gate(db: Session, notifier: FakeNotifier) -> ApprovalGate:
    return ApprovalGate(db, notifier)


def _signup(db: Session, notifier: FakeNotifier, approver: str | None = None) -> PendingAccount:
    return PendingAccountStore(db, notifier).create(EMAIL, "Applicant", USER_PASSWORD, approver_email=approver).pending


def test_verify_with_approver_waits_for_approval(db: Session, gate: ApprovalGate, notifier: FakeNotifier) -> None:
    pending = _signup(db, notifier, approver=APPROVER)

    outcome = gate.verify_and_route(EMAIL, notifier.codes[EMAIL])

    assert outcome.verified is True
    assert outcome.status == VerificationStatus.pending_admin_approval
    assert outcome.account is None
    assert db.query(Account).count() == 0
    to_email, info = notifier.last("approval")
    assert to_email == APPROVER
    assert info["link"] == f"http://testserver/approve?token={pending.id}"


def test_verify_without_approver_promotes(db: Session, gate: ApprovalGate, notifier: FakeNotifier) -> None:
    _signup(db, notifier)

    outcome = gate.verify_and_route(EMAIL, notifier.codes[EMAIL])

    assert outcome.status == VerificationStatus.approved
    assert outcome.account is not None
    accounts = db.query(Account).all()
    assert len(accounts) == 1
    assert accounts[0].email == EMAIL
    assert accounts[0].role == AccountRole.admin_user
    assert notifier.kinds() == ["otp", "welcome"]


def test_wrong_code_leaves_request_unverified(db: Session, gate: ApprovalGate, notifier: FakeNotifier) -> None:
    _signup(db, notifier)
    wrong = "000000"

    outcome = gate.verify_and_route(EMAIL, wrong)

    assert outcome.verified is False
    pending = PendingAccountStore(db).find_by_email(EMAIL)
    assert pending.otp_verified is False


def test_code_cannot_be_replayed(db: Session, gate: ApprovalGate, notifier: FakeNotifier) -> None:
    _signup(db, notifier, approver=APPROVER)
    code = notifier.codes[EMAIL]

    assert gate.verify_and_route(EMAIL, code).verified is True
    assert gate.verify_and_route(EMAIL, code).verified is False


def test_promote_at_most_once(db: Session, gate: ApprovalGate, notifier: FakeNotifier) -> None:
    pending = _signup(db, notifier, approver=APPROVER)
    gate.verify_and_route(EMAIL, notifier.codes[EMAIL])

    result = gate.promote(pending.id)
    assert result.account.email == EMAIL
    assert result.email_sent is True

    with pytest.raises(InvalidStateError) as exc:
        gate.promote(pending.id)
    assert exc.value.code == "ALREADY_APPROVED"
    assert db.query(Account).count() == 1


def test_promote_requires_verified_email(db: Session, gate: ApprovalGate, notifier: FakeNotifier) -> None:
    pending = _signup(db, notifier, approver=APPROVER)

    with pytest.raises(InvalidStateError) as exc:
        gate.promote(pending.id)
    assert exc.value.code == "EMAIL_NOT_VERIFIED"
    assert db.query(Account).count() == 0


def test_expired_request_cannot_be_promoted(db: Session, gate: ApprovalGate, notifier: FakeNotifier) -> None:
    pending = _signup(db, notifier, approver=APPROVER)
    gate.verify_and_route(EMAIL, notifier.codes[EMAIL])
    row = db.query(PendingAccount).filter(PendingAccount.id == pending.id).one()
    row.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    db.commit()

    with pytest.raises(InvalidStateError) as exc:
        gate.promote(pending.id)
    assert exc.value.code == "REQUEST_EXPIRED"
    assert db.query(Account).count() == 0


def test_unknown_token(gate: ApprovalGate) -> None:
    with pytest.raises(NotFoundError) as exc:
        gate.promote("not-a-real-token")
    assert exc.value.code == "INVALID_TOKEN"


def test_promote_when_account_appeared_meanwhile(db: Session, gate: ApprovalGate, notifier: FakeNotifier) -> None:
    pending = _signup(db, notifier, approver=APPROVER)
    gate.verify_and_route(EMAIL, notifier.codes[EMAIL])
    AccountStore(db).create(EMAIL, "Created Directly", USER_PASSWORD, AccountRole.admin_user)

    with pytest.raises(ConflictError) as exc:
        gate.promote(pending.id)
    assert exc.value.code == "USER_EXISTS"
    # The claim was rolled back with the failed insert
    row = db.query(PendingAccount).filter(PendingAccount.id == pending.id).one()
    db.refresh(row)
    assert row.admin_approved is False


def test_welcome_failure_is_not_fatal(db: Session, gate: ApprovalGate, notifier: FakeNotifier) -> None:
    pending = _signup(db, notifier, approver=APPROVER)
    gate.verify_and_route(EMAIL, notifier.codes[EMAIL])
    notifier.fail = True

    result = gate.promote(pending.id)

    assert result.email_sent is False
    assert db.query(Account).filter(Account.email == EMAIL).count() == 1

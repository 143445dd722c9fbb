from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Iterator

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Settings are read once at import time; pin them before the app is imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET_KEY"] = "tests-secret-key"
os.environ["PUBLIC_BASE_URL"] = "http://testserver"
os.environ["SIGNUP_DEFAULT_APPROVER_EMAIL"] = ""
os.environ["DEFAULT_ADMIN_EMAIL"] = ""
os.environ["DEFAULT_ADMIN_PASSWORD"] = ""
os.environ["MAILGUN_API_KEY"] = ""
os.environ["MAILGUN_DOMAIN"] = ""
os.environ["SENDGRID_API_KEY"] = ""
os.environ["CLEANUP_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.database import Base, get_db
from app.main import app
from app.models.account import Account, AccountRole
from app.models.otp_code import OtpPurpose
from app.services.accounts import AccountStore
from app.services.auth import create_access_token
from app.services.notifications import HealthResult, NotificationDispatcher, SendResult, get_notifier

ADMIN_EMAIL = "root@example.com"
ADMIN_PASSWORD = "RootPassword123!"
USER_PASSWORD = "Password123!"


class FakeNotifier(NotificationDispatcher):
    """Records every message instead of sending it. Set `fail` to simulate a transport outage."""

    def __init__(self) -> None:
        super().__init__()
        self.fail = False
        self.sent: list[tuple[str, str, dict]] = []
        self.codes: dict[str, str] = {}

    def _result(self, kind: str, to_email: str, **info) -> SendResult:
        self.sent.append((kind, to_email, info))
        if self.fail:
            return SendResult(success=False, error="transport down")
        return SendResult(success=True, message_id=f"<{kind}-{len(self.sent)}@test>")

    def send_otp(self, email, name, code, purpose=OtpPurpose.signup) -> SendResult:
        self.codes[email] = code
        return self._result("otp", email, code=code, purpose=purpose)

    def send_approval_request(self, approver_email, account_email, account_name, approval_link) -> SendResult:
        return self._result("approval", approver_email, account_email=account_email, link=approval_link)

    def send_welcome(self, email, name) -> SendResult:
        return self._result("welcome", email)

    def send_test(self, to_email) -> SendResult:
        return self._result("test", to_email)

    def check_health(self) -> HealthResult:
        return HealthResult(healthy=not self.fail, config={"transport": "fake"})

    def kinds(self) -> list[str]:
        return [kind for kind, _, _ in self.sent]

    def last(self, kind: str) -> tuple[str, dict]:
        for sent_kind, to_email, info in reversed(self.sent):
            if sent_kind == kind:
                return to_email, info
        raise AssertionError(f"no {kind} message sent")


@pytest.fixture()
def engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def client(session_factory: sessionmaker, notifier: FakeNotifier) -> Iterator[TestClient]:
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    # No context manager: startup (create_all on the configured engine, scheduler) is not needed here
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def admin(db: Session) -> Account:
    return AccountStore(db).create(ADMIN_EMAIL, "Root User", ADMIN_PASSWORD, AccountRole.super_user)


@pytest.fixture()
def admin_headers(admin: Account) -> dict[str, str]:
    token = create_access_token(admin.id, admin.email, AccountRole.super_user)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def regular_user(db: Session) -> Account:
    return AccountStore(db).create("staff@example.com", "Staff Member", USER_PASSWORD, AccountRole.admin_user)


@pytest.fixture()
def user_headers(regular_user: Account) -> dict[str, str]:
    token = create_access_token(regular_user.id, regular_user.email, AccountRole.admin_user)
    return {"Authorization": f"Bearer {token}"}

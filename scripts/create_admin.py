"""
Create an elevated (SUPER_USER) account directly, skipping signup and approval.

Run from project root:
  python scripts/create_admin.py <email> <password> [name]

Without arguments, DEFAULT_ADMIN_EMAIL / DEFAULT_ADMIN_PASSWORD / DEFAULT_ADMIN_NAME from .env are used.
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.config import get_settings  # noqa: E402
from app.database import Base, SessionLocal, engine  # noqa: E402
from app.errors import ApiError  # noqa: E402
from app.models.account import ELEVATED_ROLE  # noqa: E402
from app.services.accounts import AccountStore  # noqa: E402


def main():
    settings = get_settings()
    email = (sys.argv[1] if len(sys.argv) > 1 else settings.default_admin_email).strip()
    password = sys.argv[2] if len(sys.argv) > 2 else settings.default_admin_password
    name = sys.argv[3] if len(sys.argv) > 3 else settings.default_admin_name
    if not email or not password:
        print("Usage: python scripts/create_admin.py <email> <password> [name]")
        print("  or set DEFAULT_ADMIN_EMAIL and DEFAULT_ADMIN_PASSWORD in .env")
        sys.exit(1)
    if len(password) < settings.password_min_length:
        print(f"Password must be at least {settings.password_min_length} characters.")
        sys.exit(1)

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        account = AccountStore(db).create(email, name, password, ELEVATED_ROLE)
    except ApiError as e:
        print(f"Not created: {e.message} ({e.code})")
        sys.exit(1)
    finally:
        db.close()
    print(f"Created {ELEVATED_ROLE.value} account: id={account.id}, email={account.email}")


if __name__ == "__main__":
    main()

"""
Delete expired signup requests and expired or used one-time codes now, instead of waiting for the scheduler:
  python scripts/purge_expired.py
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.database import SessionLocal  # noqa: E402
from app.services.cleanup import run_cleanup  # noqa: E402


def main():
    db = SessionLocal()
    try:
        pending, codes = run_cleanup(db)
    finally:
        db.close()
    print(f"Deleted {pending} expired signup request(s) and {codes} expired/used code(s).")


if __name__ == "__main__":
    main()

"""
Create all tables from the SQLAlchemy models.

App startup already runs create_all(); use this when preparing a database without starting the server:
  python scripts/create_tables.py
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from sqlalchemy import inspect  # noqa: E402
from app.database import Base, engine  # noqa: E402
from app import models  # noqa: F401,E402


def main():
    Base.metadata.create_all(bind=engine)
    tables = sorted(inspect(engine).get_table_names())
    print(f"Tables present ({len(tables)}): {', '.join(tables)}")
    print("Done.")


if __name__ == "__main__":
    main()

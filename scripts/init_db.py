#!/usr/bin/env python3
"""Create the catalog and chunk tables."""

import sys
from pathlib import Path

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from portfolio_storage.database import models  # noqa: F401  registers the tables
from portfolio_storage.database.db import Base, engine


def create_tables() -> None:
    print("Creating storage tables...")
    Base.metadata.create_all(bind=engine)
    print("Tables ready: " + ", ".join(sorted(Base.metadata.tables)))


if __name__ == "__main__":
    create_tables()

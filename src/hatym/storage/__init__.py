# src/hatym/storage/__init__.py
"""
Storage layer for hatym (SQLite).

- db: connection factory + pragmas
- migrations: lightweight SQL migrations runner
- repo: transactional session / page operations
"""

from .db import SQLiteDB
from .migrations import apply_migrations, default_migrations_dir
from .repo import AssignmentRepo

__all__ = ["SQLiteDB", "apply_migrations", "default_migrations_dir", "AssignmentRepo"]

"""
Applied-state storage.

Key exports:
    - SQLiteStore: Applied-state store backed by a SQLite connection
    - open_sqlite_store: Open a database file and wrap it in a store
    - split_statements: Split SQL text into single statements
    - is_transaction_control: Detect BEGIN/COMMIT/END/ROLLBACK statements
"""

from .db import SQLiteStore, is_transaction_control, open_sqlite_store, split_statements

__all__ = ["SQLiteStore", "is_transaction_control", "open_sqlite_store", "split_statements"]

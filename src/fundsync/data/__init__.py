"""Persistence layer.

Provides the pooled SQLite database manager and the typed store used for the
exchange/market catalog, ingestion cursors, and idempotent funding/stats writes.
"""

from fundsync.data.database import Database
from fundsync.data.store import SyncStore

__all__ = ["Database", "SyncStore"]

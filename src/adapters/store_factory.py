"""Store adapter factory: creates the right ProgressStore based on config."""

from __future__ import annotations

from src.config import settings
from src.ports.store_port import ProgressStore


def create_store(backend: str | None = None) -> ProgressStore:
    """Return the store matching the STORE_BACKEND setting.

    Args:
        backend: Overrides STORE_BACKEND when given.
    """
    backend = (backend or settings.STORE_BACKEND).lower()

    if backend == "sheets":
        from src.adapters.sheet_store import SheetProgressStore

        return SheetProgressStore()

    if backend == "sqlite":
        from src.data.db import SQLiteProgressStore

        return SQLiteProgressStore(settings.DATABASE_PATH)

    raise ValueError(f"Unknown STORE_BACKEND: {backend!r}")

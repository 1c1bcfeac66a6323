"""
Shared FastAPI dependencies.
"""
import threading
from typing import Optional

from db import SessionLocal, init_db
from services.app_store import PlacesStore
from settings import settings
from storage.state_storage import StateStorage

_store: Optional[PlacesStore] = None
_store_lock = threading.Lock()


def get_store() -> PlacesStore:
    """Return the process-wide store, loading persisted state on first use."""
    global _store
    with _store_lock:
        if _store is None:
            init_db()
            storage = StateStorage(SessionLocal, settings.PLACES_STORAGE_KEY)
            _store = PlacesStore.load(storage)
        return _store

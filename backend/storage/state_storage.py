"""
Application state storage.

Reads and writes the single serialized AppState document kept in one
key-value slot. There is no schema migration: a document that cannot be
read is replaced by the defaults on the next write.
"""
import json
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from domain.models import AppState
from repositories import StorageSlotsRepository

logger = logging.getLogger(__name__)


class StateStorage:
    """
    Storage adapter for the AppState document.

    The slot holds ``{"locations": [...], "isCollecting": bool, "showList": bool}``
    as JSON text.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        key: str,
        repo: Optional[StorageSlotsRepository] = None,
    ):
        self.session_factory = session_factory
        self.key = key
        self.repo = repo or StorageSlotsRepository()

    def load(self) -> AppState:
        """
        Load the persisted state.

        Returns the defaults when the slot is empty or its content is
        malformed; the failure is logged and not raised.
        """
        with self.session_factory() as session:
            raw = self.repo.get_value(session, self.key)
        if raw is None:
            return AppState()
        try:
            return AppState.from_document(json.loads(raw))
        except ValueError as exc:
            # json.JSONDecodeError is a ValueError as well
            logger.warning("Ignoring malformed state document in slot %s: %s", self.key, exc)
            return AppState()

    def save(self, state: AppState) -> None:
        """Overwrite the slot with the full serialized state."""
        raw = json.dumps(state.to_document())
        with self.session_factory() as session:
            self.repo.put_value(session, self.key, raw)
        logger.debug("Persisted %d locations to slot %s", len(state.locations), self.key)

    def clear(self) -> None:
        """Erase the slot."""
        with self.session_factory() as session:
            removed = self.repo.delete_value(session, self.key)
        if removed:
            logger.info("Erased state slot %s", self.key)

    def read_raw(self) -> Optional[str]:
        """Return the slot content as stored, or None."""
        with self.session_factory() as session:
            return self.repo.get_value(session, self.key)

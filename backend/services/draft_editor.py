"""
Draft/editor panel state machine.

    CLOSED -> CREATING -> CLOSED   (cancel or commit)
    CLOSED -> EDITING  -> CLOSED   (cancel or commit)

Opening a draft while another is open replaces it. Geocode lookups are
tagged with the token of the draft that started them; a result that comes
back after that draft was cancelled or replaced is dropped.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from domain.models import Draft, DraftMode, Place

logger = logging.getLogger(__name__)


class NoDraftError(RuntimeError):
    """Raised when an operation needs an open draft and there is none."""


@dataclass(frozen=True)
class LookupTicket:
    """Identifies one in-flight lookup and the coordinates it was asked for."""
    token: str
    lat: float
    lng: float


class DraftEditor:
    def __init__(self) -> None:
        self.draft: Optional[Draft] = None

    @property
    def mode(self) -> DraftMode:
        return self.draft.mode if self.draft else DraftMode.CLOSED

    @property
    def loading(self) -> bool:
        return bool(self.draft and self.draft.loading)

    def open_create(self, lat: float, lng: float) -> Draft:
        self.draft = Draft(lat=lat, lng=lng)
        logger.debug("Opened create draft %s at %s,%s", self.draft.token, lat, lng)
        return self.draft

    def open_edit(self, place: Place) -> Draft:
        self.draft = Draft(
            lat=place.lat,
            lng=place.lng,
            title=place.title,
            notes=place.notes,
            place_id=place.id,
        )
        logger.debug("Opened edit draft %s for place %s", self.draft.token, place.id)
        return self.draft

    def update_fields(
        self,
        *,
        title: Optional[str] = None,
        notes: Optional[str] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
    ) -> Draft:
        if self.draft is None:
            raise NoDraftError("No draft is open")
        if title is not None:
            self.draft.title = title
        if notes is not None:
            self.draft.notes = notes
        if lat is not None:
            self.draft.lat = lat
        if lng is not None:
            self.draft.lng = lng
        return self.draft

    def cancel(self) -> None:
        if self.draft is not None:
            logger.debug("Cancelled draft %s", self.draft.token)
        self.draft = None

    def begin_lookup(self) -> Optional[LookupTicket]:
        """Mark the open draft as loading and return a ticket for its lookup."""
        if self.draft is None:
            return None
        self.draft.loading = True
        return LookupTicket(token=self.draft.token, lat=self.draft.lat, lng=self.draft.lng)

    def finish_lookup(self, ticket: LookupTicket) -> Optional[Draft]:
        """
        Accept a lookup result.

        Returns the open draft when the ticket still belongs to it, else None
        and the result is discarded.
        """
        if self.draft is None or self.draft.token != ticket.token:
            logger.info("Discarding stale geocode result for draft %s", ticket.token)
            return None
        self.draft.loading = False
        return self.draft

    def close(self, token: str) -> None:
        """Close the draft if it is still the one identified by token."""
        if self.draft is not None and self.draft.token == token:
            self.draft = None

"""
Place list operations.

Works on the ``locations`` list of an AppState in place. Lookups and
mutations by id are permissive: an unknown id is a no-op, never an error.
"""
from __future__ import annotations

import logging
from typing import Iterable, Iterator, List, Optional, Set

from domain.models import UNTITLED_PLACE, AppState, Draft, Place, PlaceMeta

logger = logging.getLogger(__name__)

# Fields an edit is allowed to overwrite. id and created_at are immutable.
MUTABLE_FIELDS = ("lat", "lng", "title", "notes", "meta")


def default_title(title: Optional[str], meta: Optional[PlaceMeta]) -> str:
    """Trimmed title, else the looked-up city, else the untitled label."""
    cleaned = (title or "").strip()
    if cleaned:
        return cleaned
    if meta is not None and meta.city:
        return meta.city
    return UNTITLED_PLACE


class PlaceList:
    """Ordered, newest-first collection of places with unique ids."""

    def __init__(self, state: AppState):
        self.state = state

    @property
    def locations(self) -> List[Place]:
        return self.state.locations

    def __iter__(self) -> Iterator[Place]:
        return iter(self.state.locations)

    def __len__(self) -> int:
        return len(self.state.locations)

    def get(self, place_id: str) -> Optional[Place]:
        for place in self.state.locations:
            if place.id == place_id:
                return place
        return None

    def ids(self) -> List[str]:
        return [p.id for p in self.state.locations]

    def add(self, draft: Draft, meta: Optional[PlaceMeta] = None) -> Place:
        """Create a place from a draft and prepend it."""
        meta = meta if meta is not None else PlaceMeta()
        existing = set(self.ids())
        place_id = Place.generate_id()
        while place_id in existing:
            place_id = Place.generate_id()
        place = Place(
            id=place_id,
            lat=draft.lat,
            lng=draft.lng,
            title=default_title(draft.title, meta),
            notes=(draft.notes or "").strip(),
            created_at=Place.now_ms(),
            meta=meta,
        )
        self.state.locations.insert(0, place)
        logger.info("Added place %s (%s) at %s,%s", place.id, place.title, place.lat, place.lng)
        return place

    def update(self, place_id: str, **fields) -> Optional[Place]:
        """Overwrite mutable fields of a place. Returns None for unknown ids."""
        unknown = set(fields) - set(MUTABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        place = self.get(place_id)
        if place is None:
            logger.debug("Update ignored for unknown place %s", place_id)
            return None
        for name, value in fields.items():
            setattr(place, name, value)
        return place

    def remove(self, place_id: str) -> bool:
        before = len(self.state.locations)
        self.state.locations[:] = [p for p in self.state.locations if p.id != place_id]
        removed = len(self.state.locations) != before
        if removed:
            logger.info("Removed place %s", place_id)
        return removed

    def replace_all(self, places: Iterable[Place]) -> List[Place]:
        """
        Replace the whole list, as on import.

        Entries without an id, or repeating an id seen earlier in the list,
        are given a fresh id.
        """
        seen: Set[str] = set()
        result: List[Place] = []
        for place in places:
            if not isinstance(place.id, str) or not place.id or place.id in seen:
                old_id = place.id
                place.id = Place.generate_id()
                logger.warning("Imported place id %r missing or duplicated; assigned %s", old_id, place.id)
            seen.add(place.id)
            result.append(place)
        self.state.locations[:] = result
        logger.info("Replaced place list with %d entries", len(result))
        return result

    def clear(self) -> None:
        self.state.locations.clear()

"""
Application store.

Owns the AppState, the place list and the draft editor. Every state change
goes through ``PlacesStore.dispatch``; mutating actions re-serialize the
whole document and overwrite the persisted slot before returning.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from domain.models import AppState, Draft, Place, PlaceMeta
from services import geocoding
from services.draft_editor import DraftEditor
from services.import_export import parse_import
from services.place_list import PlaceList
from storage.state_storage import StateStorage

logger = logging.getLogger(__name__)

Geocoder = Callable[[float, float], PlaceMeta]


class ResetNotConfirmedError(RuntimeError):
    """Raised when a reset is dispatched without explicit confirmation."""


# ============================================
# Actions
# ============================================

@dataclass
class AddPlace:
    draft: Draft
    meta: Optional[PlaceMeta] = None


@dataclass
class UpdatePlace:
    place_id: str
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RemovePlace:
    place_id: str


@dataclass
class ImportPlaces:
    places: List[Place]


@dataclass
class ResetState:
    confirmed: bool = False


@dataclass
class FinishCollecting:
    """The "Done" button: stop collecting and hide the list."""


@dataclass
class ToggleList:
    pass


@dataclass
class SetCollecting:
    enabled: bool = True


class PlacesStore:
    """Single owner of application state."""

    def __init__(
        self,
        storage: StateStorage,
        state: Optional[AppState] = None,
        geocoder: Optional[Geocoder] = None,
    ):
        self.storage = storage
        self.state = state if state is not None else AppState()
        self.places = PlaceList(self.state)
        self.editor = DraftEditor()
        self.geocoder: Geocoder = geocoder or geocoding.lookup
        self._lock = threading.RLock()
        self._handlers = {
            AddPlace: self._add_place,
            UpdatePlace: self._update_place,
            RemovePlace: self._remove_place,
            ImportPlaces: self._import_places,
            ResetState: self._reset,
            FinishCollecting: self._finish_collecting,
            ToggleList: self._toggle_list,
            SetCollecting: self._set_collecting,
        }

    @classmethod
    def load(cls, storage: StateStorage, geocoder: Optional[Geocoder] = None) -> "PlacesStore":
        """Create a store from the persisted document (or the defaults)."""
        state = storage.load()
        logger.info(
            "Loaded state: %d locations, collecting=%s, show_list=%s",
            len(state.locations),
            state.is_collecting,
            state.show_list,
        )
        return cls(storage, state=state, geocoder=geocoder)

    # ------------------------------------------------------------------
    # Dispatcher
    # ------------------------------------------------------------------

    def dispatch(self, action: Any) -> Any:
        handler = self._handlers.get(type(action))
        if handler is None:
            raise TypeError(f"Unknown action: {type(action).__name__}")
        with self._lock:
            result = handler(action)
            if not isinstance(action, ResetState):
                self.storage.save(self.state)
            return result

    def _add_place(self, action: AddPlace) -> Place:
        return self.places.add(action.draft, action.meta)

    def _update_place(self, action: UpdatePlace) -> Optional[Place]:
        return self.places.update(action.place_id, **action.fields)

    def _remove_place(self, action: RemovePlace) -> bool:
        return self.places.remove(action.place_id)

    def _import_places(self, action: ImportPlaces) -> List[Place]:
        result = self.places.replace_all(action.places)
        self.state.is_collecting = False
        self.state.show_list = False
        return result

    def _reset(self, action: ResetState) -> None:
        if not action.confirmed:
            raise ResetNotConfirmedError("Reset requires confirmation")
        self.places.clear()
        self.state.is_collecting = True
        self.state.show_list = True
        self.editor.cancel()
        self.storage.clear()
        logger.info("State reset")

    def _finish_collecting(self, action: FinishCollecting) -> None:
        self.state.is_collecting = False
        self.state.show_list = False

    def _toggle_list(self, action: ToggleList) -> bool:
        self.state.show_list = not self.state.show_list
        return self.state.show_list

    def _set_collecting(self, action: SetCollecting) -> None:
        self.state.is_collecting = action.enabled

    # ------------------------------------------------------------------
    # Convenience wrappers
    # ------------------------------------------------------------------

    def import_document(self, content) -> List[Place]:
        """Parse and import an uploaded document. ImportFormatError leaves state untouched."""
        places = parse_import(content)
        return self.dispatch(ImportPlaces(places))

    def reset(self, confirmed: bool) -> None:
        self.dispatch(ResetState(confirmed=confirmed))

    # ------------------------------------------------------------------
    # Draft flow
    # ------------------------------------------------------------------

    def handle_map_click(self, lat: float, lng: float) -> Optional[Draft]:
        """Open a create draft at the clicked point when collecting."""
        with self._lock:
            if not self.state.is_collecting:
                logger.debug("Ignoring map click at %s,%s outside collecting mode", lat, lng)
                return None
            return self.editor.open_create(lat, lng)

    def start_edit(self, place_id: str) -> Optional[Draft]:
        with self._lock:
            place = self.places.get(place_id)
            if place is None:
                return None
            return self.editor.open_edit(place)

    def update_draft(self, **fields) -> Draft:
        with self._lock:
            return self.editor.update_fields(**fields)

    def cancel_draft(self) -> None:
        with self._lock:
            self.editor.cancel()

    def commit_draft(self) -> Optional[Place]:
        """
        Geocode the open draft and commit it.

        The lookup runs without holding the lock. If the draft was cancelled
        or replaced while it ran, nothing is committed and None is returned.
        """
        with self._lock:
            ticket = self.editor.begin_lookup()
        if ticket is None:
            return None

        try:
            meta = self.geocoder(ticket.lat, ticket.lng)
        except Exception as exc:
            logger.warning("Geocoder failed for %s,%s; committing without meta: %s", ticket.lat, ticket.lng, exc)
            meta = PlaceMeta()

        with self._lock:
            draft = self.editor.finish_lookup(ticket)
            if draft is None:
                return None
            if draft.place_id:
                place = self.dispatch(
                    UpdatePlace(
                        draft.place_id,
                        {
                            "lat": draft.lat,
                            "lng": draft.lng,
                            "title": draft.title,
                            "notes": draft.notes,
                            "meta": meta,
                        },
                    )
                )
            else:
                place = self.dispatch(AddPlace(draft, meta))
            self.editor.close(draft.token)
            return place

"""
Core domain models for the places map.
These are framework-agnostic and can be used across all services.

Serialized documents use the camelCase keys of the browser-side format
(``createdAt``, ``displayName``, ``isCollecting``, ``showList``) so that
exported files stay interchangeable with it.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import time
import uuid


UNTITLED_PLACE = "Untitled place"


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _optional_text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


class DraftMode(str, Enum):
    """State of the draft/editor panel."""
    CLOSED = "closed"
    CREATING = "creating"
    EDITING = "editing"


@dataclass
class PlaceMeta:
    """Reverse-geocoding enrichment for a place. Any field may be missing."""
    display_name: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.display_name or self.city or self.country)

    @property
    def short_label(self) -> str:
        """Return ``"city, country"`` with missing parts left out."""
        return ", ".join(p for p in (self.city, self.country) if p)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.display_name is not None:
            data["displayName"] = self.display_name
        if self.city is not None:
            data["city"] = self.city
        if self.country is not None:
            data["country"] = self.country
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PlaceMeta":
        if not isinstance(data, dict):
            return cls()
        return cls(
            display_name=_optional_text(data.get("displayName")),
            city=_optional_text(data.get("city")),
            country=_optional_text(data.get("country")),
        )


@dataclass
class Place:
    """
    One saved location.

    ``id`` and ``created_at`` are assigned once and never change.
    ``created_at`` is milliseconds since the epoch.
    """
    id: str
    lat: float
    lng: float
    title: str = ""
    notes: str = ""
    created_at: Optional[int] = None
    meta: Optional[PlaceMeta] = None

    @staticmethod
    def generate_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def now_ms() -> int:
        return int(time.time() * 1000)

    @property
    def has_coordinates(self) -> bool:
        return all(
            isinstance(v, (int, float)) and not isinstance(v, bool)
            for v in (self.lat, self.lng)
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "lat": self.lat,
            "lng": self.lng,
            "title": self.title,
            "notes": self.notes,
            "createdAt": self.created_at,
        }
        if self.meta is not None:
            data["meta"] = self.meta.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Place":
        """Build a place from its serialized form without validating it."""
        meta = data.get("meta")
        return cls(
            id=data.get("id"),
            lat=data.get("lat"),
            lng=data.get("lng"),
            title=_text(data.get("title")),
            notes=_text(data.get("notes")),
            created_at=data.get("createdAt"),
            meta=PlaceMeta.from_dict(meta) if meta is not None else None,
        )


@dataclass
class Draft:
    """
    Transient create/edit form state. Never persisted.

    ``token`` identifies this draft instance so that late geocode results
    can be matched against the draft that asked for them.
    """
    lat: float
    lng: float
    title: str = ""
    notes: str = ""
    place_id: Optional[str] = None
    token: str = field(default_factory=lambda: uuid.uuid4().hex)
    loading: bool = False

    @property
    def mode(self) -> DraftMode:
        return DraftMode.EDITING if self.place_id else DraftMode.CREATING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lat": self.lat,
            "lng": self.lng,
            "title": self.title,
            "notes": self.notes,
            "placeId": self.place_id,
            "mode": self.mode.value,
            "loading": self.loading,
        }


@dataclass
class AppState:
    """Process-wide state persisted as one document."""
    locations: List[Place] = field(default_factory=list)
    is_collecting: bool = True
    show_list: bool = True

    def to_document(self) -> Dict[str, Any]:
        return {
            "locations": [p.to_dict() for p in self.locations],
            "isCollecting": self.is_collecting,
            "showList": self.show_list,
        }

    @classmethod
    def from_document(cls, data: Any) -> "AppState":
        """
        Rebuild state from a persisted document.

        Raises ValueError when the document is not an object with a
        ``locations`` list. Missing flags in an otherwise valid document
        read as False.
        """
        if not isinstance(data, dict) or not isinstance(data.get("locations"), list):
            raise ValueError("Persisted document has no locations list")
        locations = [Place.from_dict(item) for item in data["locations"] if isinstance(item, dict)]
        return cls(
            locations=locations,
            is_collecting=bool(data.get("isCollecting", False)),
            show_list=bool(data.get("showList", False)),
        )

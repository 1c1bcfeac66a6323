"""
Places API routes: place list, mode flags, draft editor, import/export.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile
from pydantic import BaseModel, Field

from api.dependencies import get_store
from domain.models import Draft, Place
from services.app_store import (
    FinishCollecting,
    PlacesStore,
    RemovePlace,
    ResetNotConfirmedError,
    SetCollecting,
    ToggleList,
)
from services.draft_editor import NoDraftError
from services.import_export import (
    EXPORT_FILENAME,
    EXPORT_MEDIA_TYPE,
    ImportFormatError,
    export_locations,
)

router = APIRouter()
logger = logging.getLogger(__name__)


class PlaceMetaResponse(BaseModel):
    displayName: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None


class PlaceResponse(BaseModel):
    id: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    title: str = ""
    notes: str = ""
    createdAt: Optional[int] = None
    meta: Optional[PlaceMetaResponse] = None


class DraftResponse(BaseModel):
    lat: Optional[float] = None
    lng: Optional[float] = None
    title: str
    notes: str
    placeId: Optional[str] = None
    mode: str
    loading: bool = False


class StateResponse(BaseModel):
    locations: List[PlaceResponse]
    isCollecting: bool
    showList: bool
    draft: Optional[DraftResponse] = None


class DraftUpdate(BaseModel):
    title: Optional[str] = None
    notes: Optional[str] = None
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)


class ImportResponse(BaseModel):
    imported: int
    isCollecting: bool
    showList: bool


def _number_or_none(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def place_to_response(place: Place) -> PlaceResponse:
    """Convert domain Place to API response."""
    # imported entries are not validated; unusable values are reported as null
    data = place.to_dict()
    data["lat"] = _number_or_none(data["lat"])
    data["lng"] = _number_or_none(data["lng"])
    if not isinstance(data["createdAt"], int) or isinstance(data["createdAt"], bool):
        data["createdAt"] = None
    if not isinstance(data["id"], str):
        data["id"] = None
    return PlaceResponse(**data)


def draft_to_response(draft: Draft) -> DraftResponse:
    data = draft.to_dict()
    data["lat"] = _number_or_none(data["lat"])
    data["lng"] = _number_or_none(data["lng"])
    return DraftResponse(**data)


@router.get("/state", response_model=StateResponse)
def get_state(store: PlacesStore = Depends(get_store)):
    """Flags, places and the open draft."""
    draft = store.editor.draft
    return StateResponse(
        locations=[place_to_response(p) for p in store.places],
        isCollecting=store.state.is_collecting,
        showList=store.state.show_list,
        draft=draft_to_response(draft) if draft else None,
    )


@router.get("/places", response_model=List[PlaceResponse])
def list_places(store: PlacesStore = Depends(get_store)):
    return [place_to_response(p) for p in store.places]


@router.get("/places/{place_id}", response_model=PlaceResponse)
def get_place(place_id: str, store: PlacesStore = Depends(get_store)):
    place = store.places.get(place_id)
    if not place:
        raise HTTPException(status_code=404, detail="Place not found")
    return place_to_response(place)


@router.delete("/places/{place_id}", status_code=204)
def delete_place(place_id: str, store: PlacesStore = Depends(get_store)):
    """Delete a place. Unknown ids are ignored."""
    store.dispatch(RemovePlace(place_id))
    return Response(status_code=204)


@router.post("/places/{place_id}/edit", response_model=DraftResponse)
def edit_place(place_id: str, store: PlacesStore = Depends(get_store)):
    """Open the editor pre-filled with a place."""
    draft = store.start_edit(place_id)
    if draft is None:
        raise HTTPException(status_code=404, detail="Place not found")
    return draft_to_response(draft)


@router.post("/mode/done", response_model=StateResponse)
def finish_collecting(store: PlacesStore = Depends(get_store)):
    store.dispatch(FinishCollecting())
    return get_state(store)


@router.post("/mode/collect", response_model=StateResponse)
def resume_collecting(store: PlacesStore = Depends(get_store)):
    store.dispatch(SetCollecting(True))
    return get_state(store)


@router.post("/list/toggle", response_model=StateResponse)
def toggle_list(store: PlacesStore = Depends(get_store)):
    store.dispatch(ToggleList())
    return get_state(store)


@router.post("/reset", response_model=StateResponse)
def reset(confirm: bool = False, store: PlacesStore = Depends(get_store)):
    """Clear everything. Requires ``?confirm=true``."""
    try:
        store.reset(confirmed=confirm)
    except ResetNotConfirmedError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return get_state(store)


@router.get("/export")
def export_places(store: PlacesStore = Depends(get_store)):
    """Download the place list as a pretty-printed JSON file."""
    body = export_locations(list(store.places))
    return Response(
        content=body,
        media_type=EXPORT_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{EXPORT_FILENAME}"'},
    )


@router.post("/import", response_model=ImportResponse)
async def import_places(file: UploadFile = File(...), store: PlacesStore = Depends(get_store)):
    """Replace the place list with an uploaded JSON array."""
    content = await file.read()
    try:
        imported = store.import_document(content)
    except ImportFormatError as exc:
        logger.info("Rejected import of %s: %s", file.filename, exc)
        raise HTTPException(status_code=400, detail=str(exc))
    return ImportResponse(
        imported=len(imported),
        isCollecting=store.state.is_collecting,
        showList=store.state.show_list,
    )


@router.get("/draft", response_model=Optional[DraftResponse])
def get_draft(store: PlacesStore = Depends(get_store)):
    draft = store.editor.draft
    return draft_to_response(draft) if draft else None


@router.patch("/draft", response_model=DraftResponse)
def update_draft(data: DraftUpdate, store: PlacesStore = Depends(get_store)):
    try:
        draft = store.update_draft(**data.model_dump(exclude_none=True))
    except NoDraftError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return draft_to_response(draft)


@router.post("/draft/cancel", status_code=204)
def cancel_draft(store: PlacesStore = Depends(get_store)):
    store.cancel_draft()
    return Response(status_code=204)


@router.post("/draft/commit", response_model=Optional[PlaceResponse])
def commit_draft(store: PlacesStore = Depends(get_store)):
    """
    Look up the draft's coordinates and save it.

    Returns the created or updated place, or null when there was nothing
    to commit.
    """
    place = store.commit_draft()
    return place_to_response(place) if place else None

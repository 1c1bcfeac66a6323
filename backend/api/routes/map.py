"""
Map API routes: view configuration, markers, clicks and static preview.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field

from api.dependencies import get_store
from api.routes.places import DraftResponse, draft_to_response
from services.app_store import PlacesStore
from services.map_surface import build_map_view, list_panel, render_static_map

router = APIRouter()
logger = logging.getLogger(__name__)


class MapClick(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


@router.get("")
def get_map(store: PlacesStore = Depends(get_store)):
    """Map view configuration, markers with popups and the side list."""
    places = list(store.places)
    view = build_map_view(places).to_dict()
    view["list"] = list_panel(places, store.state.is_collecting, store.state.show_list)
    view["isCollecting"] = store.state.is_collecting
    return view


@router.post("/click", response_model=Optional[DraftResponse])
def click_map(click: MapClick, store: PlacesStore = Depends(get_store)):
    """
    Handle a click on the map.

    Opens a new-place draft in collecting mode; otherwise returns null.
    """
    draft = store.handle_map_click(click.lat, click.lng)
    return draft_to_response(draft) if draft else None


@router.get("/preview.png")
def get_map_png(
    width: int = Query(800, ge=64, le=2048),
    height: int = Query(500, ge=64, le=2048),
    store: PlacesStore = Depends(get_store),
):
    """Static PNG preview of all markers."""
    png = render_static_map(list(store.places), width=width, height=height)
    return Response(content=png, media_type="image/png")

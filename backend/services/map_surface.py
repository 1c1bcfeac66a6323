"""
Map interaction surface.

Builds what a map widget needs to show the place list: view configuration,
one marker per place with its popup content, the side list texts, and a
static PNG preview rendered with Pillow (optionally on raster tiles).
"""
import os
import math
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from functools import lru_cache
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests
from PIL import Image, ImageDraw

from domain.models import Place
from settings import BASE_DIR, settings

logger = logging.getLogger(__name__)

# Map view defaults (USA centroid)
DEFAULT_CENTER = (39.8283, -98.5795)
DEFAULT_ZOOM = 4
TILE_LAYER_URL = "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png"
TILE_ATTRIBUTION = "© OpenStreetMap contributors"

# Tile configuration for the static preview
MAP_TILES_ENABLED = settings.MAP_TILES_ENABLED
MAP_TILE_URL_TEMPLATE = os.getenv("MAP_TILE_URL_TEMPLATE", "https://tile.openstreetmap.org/{z}/{x}/{y}.png")
MAP_TILE_USER_AGENT = os.getenv(
    "MAP_TILE_USER_AGENT",
    os.getenv("NOMINATIM_USER_AGENT", "places-map/0.1 (tile-fetch)"),
)
MAP_TILE_REFERER = os.getenv("MAP_TILE_REFERER")
MAP_TILE_TIMEOUT = float(os.getenv("MAP_TILE_TIMEOUT", "3"))
MAP_TILE_MIN_INTERVAL_SEC = float(os.getenv("MAP_TILE_MIN_INTERVAL_SEC", "1.0"))
MAP_TILE_HEADERS = {"User-Agent": MAP_TILE_USER_AGENT}
if MAP_TILE_REFERER:
    MAP_TILE_HEADERS["Referer"] = MAP_TILE_REFERER
_TILE_SESSION = requests.Session()
_TILE_LOCK = threading.Lock()
_LAST_TILE_TS = 0.0
MAP_TILE_CACHE_PATH = Path(
    os.getenv("MAP_TILE_CACHE_PATH", str(BASE_DIR / "data" / "tile_cache.sqlite"))
)
MAP_TILE_CACHE_TTL_SECONDS = int(os.getenv("MAP_TILE_CACHE_TTL_SECONDS", str(30 * 24 * 3600)))
_CACHE_DB_LOCK = threading.Lock()
_CACHE_DB: Optional[sqlite3.Connection] = None

TILE_SIZE = 256
GRID_BACKGROUND = (236, 240, 243)
GRID_LINE_COLOR = (210, 216, 222)
MARKER_FILL = (37, 99, 235)
MARKER_OUTLINE = (255, 255, 255)
MARKER_RADIUS = 7
CANVAS_PADDING_PX = 32


@dataclass
class MarkerPopup:
    title: str
    subtitle: str = ""
    notes: str = ""
    details: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "subtitle": self.subtitle,
            "notes": self.notes,
            "details": self.details,
        }


@dataclass
class MapMarker:
    place_id: str
    lat: float
    lng: float
    popup: MarkerPopup

    def to_dict(self) -> Dict[str, Any]:
        return {
            "placeId": self.place_id,
            "lat": self.lat,
            "lng": self.lng,
            "popup": self.popup.to_dict(),
        }


@dataclass
class MapView:
    center: Tuple[float, float] = DEFAULT_CENTER
    zoom: int = DEFAULT_ZOOM
    tile_url: str = TILE_LAYER_URL
    attribution: str = TILE_ATTRIBUTION
    markers: List[MapMarker] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "center": {"lat": self.center[0], "lng": self.center[1]},
            "zoom": self.zoom,
            "tileLayer": {"url": self.tile_url, "attribution": self.attribution},
            "markers": [m.to_dict() for m in self.markers],
        }


def place_subtitle(place: Place) -> str:
    """``"city, country"`` for the popup and list rows; empty without meta."""
    if place.meta is None:
        return ""
    return place.meta.short_label


def build_marker(place: Place) -> Optional[MapMarker]:
    """Marker for a place, or None when its coordinates are not numeric."""
    if not place.has_coordinates:
        logger.debug("Skipping marker for place %s without numeric coordinates", place.id)
        return None
    popup = MarkerPopup(
        title=place.title,
        subtitle=place_subtitle(place),
        notes=place.notes,
        details=place.meta.display_name if place.meta else None,
    )
    return MapMarker(place_id=place.id, lat=float(place.lat), lng=float(place.lng), popup=popup)


def build_map_view(places: Sequence[Place]) -> MapView:
    markers = [m for m in (build_marker(p) for p in places) if m is not None]
    return MapView(markers=markers)


def list_panel(places: Sequence[Place], is_collecting: bool, show_list: bool) -> Dict[str, Any]:
    """Texts and rows for the side list."""
    heading = "Places (click map to add)" if is_collecting else "Places"
    empty_hint = None
    if not places:
        hint = "Click on the map to start." if is_collecting else "Use Import JSON to load some."
        empty_hint = f"No places yet. {hint}"
    return {
        "visible": show_list,
        "heading": heading,
        "emptyHint": empty_hint,
        "toggleLabel": None if is_collecting else ("Hide List" if show_list else "Show List"),
        "items": [
            {
                "id": p.id,
                "title": p.title,
                "subtitle": place_subtitle(p),
                "notes": p.notes,
            }
            for p in places
        ],
    }


# ============================================
# Static preview rendering
# ============================================

def _get_tile_db() -> sqlite3.Connection:
    """Lazily open the tile cache DB and ensure schema exists."""
    global _CACHE_DB
    with _CACHE_DB_LOCK:
        if _CACHE_DB is None:
            MAP_TILE_CACHE_PATH.parent.mkdir(parents=True, exist_ok=True)
            _CACHE_DB = sqlite3.connect(str(MAP_TILE_CACHE_PATH), check_same_thread=False)
            _CACHE_DB.execute(
                """
                CREATE TABLE IF NOT EXISTS tiles (
                    z INTEGER,
                    x INTEGER,
                    y INTEGER,
                    fetched_at INTEGER,
                    data BLOB,
                    PRIMARY KEY (z, x, y)
                )
                """
            )
            _CACHE_DB.commit()
        return _CACHE_DB


def _get_tile_from_cache(z: int, x: int, y: int) -> Optional[bytes]:
    """Fetch tile bytes from SQLite cache if present and not expired."""
    try:
        db = _get_tile_db()
        with _CACHE_DB_LOCK:
            row = db.execute(
                "SELECT fetched_at, data FROM tiles WHERE z=? AND x=? AND y=?",
                (z, x, y),
            ).fetchone()
    except (sqlite3.Error, OSError) as exc:
        logger.warning("Tile cache read failed for %s/%s/%s: %s", z, x, y, exc)
        return None
    if not row:
        return None
    fetched_at, data = row
    if MAP_TILE_CACHE_TTL_SECONDS > 0:
        age = time.time() - (fetched_at or 0)
        if age > MAP_TILE_CACHE_TTL_SECONDS:
            return None
    return data


def _store_tile_in_cache(z: int, x: int, y: int, data: bytes) -> None:
    """Store tile bytes in SQLite cache."""
    try:
        db = _get_tile_db()
        with _CACHE_DB_LOCK:
            db.execute(
                "INSERT OR REPLACE INTO tiles (z, x, y, fetched_at, data) VALUES (?, ?, ?, ?, ?)",
                (z, x, y, int(time.time()), data),
            )
            db.commit()
    except (sqlite3.Error, OSError) as exc:
        logger.warning("Tile cache write failed for %s/%s/%s: %s", z, x, y, exc)


def _fetch_tile_http(z: int, x: int, y: int) -> Optional[bytes]:
    """
    Fetch a single tile via HTTP with rate limiting.
    Returns the raw bytes or None on error.
    """
    global _LAST_TILE_TS

    if not MAP_TILES_ENABLED or not MAP_TILE_URL_TEMPLATE:
        return None

    url = MAP_TILE_URL_TEMPLATE.format(z=z, x=x, y=y)

    with _TILE_LOCK:
        now = time.time()
        elapsed = now - _LAST_TILE_TS
        if elapsed < MAP_TILE_MIN_INTERVAL_SEC:
            time.sleep(MAP_TILE_MIN_INTERVAL_SEC - elapsed)
        _LAST_TILE_TS = time.time()
        try:
            resp = _TILE_SESSION.get(url, headers=MAP_TILE_HEADERS, timeout=MAP_TILE_TIMEOUT)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Tile fetch failed for %s: %s", url, exc)
            return None
    return resp.content


@lru_cache(maxsize=256)
def _fetch_tile_cached(z: int, x: int, y: int) -> Optional[Image.Image]:
    """Cached tile fetch; wraps the throttled HTTP helper."""
    data = _get_tile_from_cache(z, x, y)
    from_cache = data is not None
    if data is None:
        data = _fetch_tile_http(z, x, y)
    if data is None:
        return None
    try:
        img = Image.open(BytesIO(data)).convert("RGB")
    except OSError as exc:
        logger.warning("Tile decode failed for %s/%s/%s: %s", z, x, y, exc)
        return None
    if not from_cache:
        _store_tile_in_cache(z, x, y, data)
    return img


def _latlon_to_tile_xy(lat: float, lon: float, zoom: int) -> Tuple[float, float]:
    """Convert lat/lon to fractional Web Mercator tile coords."""
    lat = max(-85.0511, min(85.0511, lat))
    lat_rad = math.radians(lat)
    n = 2.0 ** zoom
    x = (lon + 180.0) / 360.0 * n
    y = (1.0 - math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad)) / math.pi) / 2.0 * n
    return x, y


def _pick_zoom(points: Sequence[Tuple[float, float]], width: int, height: int) -> int:
    """Largest zoom (<= 12) at which all points fit inside the padded canvas."""
    if len(points) < 2:
        return DEFAULT_ZOOM if not points else 10
    usable_w = max(1, width - 2 * CANVAS_PADDING_PX)
    usable_h = max(1, height - 2 * CANVAS_PADDING_PX)
    for zoom in range(12, 0, -1):
        xs, ys = zip(*(_latlon_to_tile_xy(lat, lon, zoom) for lat, lon in points))
        span_x = (max(xs) - min(xs)) * TILE_SIZE
        span_y = (max(ys) - min(ys)) * TILE_SIZE
        if span_x <= usable_w and span_y <= usable_h:
            return zoom
    return 1


def _draw_grid(img: Image.Image) -> None:
    draw = ImageDraw.Draw(img)
    step = 64
    for x in range(0, img.width, step):
        draw.line([(x, 0), (x, img.height)], fill=GRID_LINE_COLOR, width=1)
    for y in range(0, img.height, step):
        draw.line([(0, y), (img.width, y)], fill=GRID_LINE_COLOR, width=1)


def _draw_tile_background(img: Image.Image, zoom: int, origin_x: float, origin_y: float) -> bool:
    """
    Paste tiles covering the canvas whose top-left is at (origin_x, origin_y)
    in world pixel coordinates. Returns True if at least one tile was drawn.
    """
    if not MAP_TILES_ENABLED or not MAP_TILE_URL_TEMPLATE:
        return False
    n = 2 ** zoom
    tx_min = int(math.floor(origin_x / TILE_SIZE))
    ty_min = int(math.floor(origin_y / TILE_SIZE))
    tx_max = int(math.floor((origin_x + img.width) / TILE_SIZE))
    ty_max = int(math.floor((origin_y + img.height) / TILE_SIZE))

    any_tile = False
    for ty in range(ty_min, ty_max + 1):
        if ty < 0 or ty >= n:
            continue
        for tx in range(tx_min, tx_max + 1):
            tile = _fetch_tile_cached(zoom, tx % n, ty)
            if tile is None:
                continue
            any_tile = True
            px = int(tx * TILE_SIZE - origin_x)
            py = int(ty * TILE_SIZE - origin_y)
            img.paste(tile, (px, py))
    return any_tile


def render_static_map(places: Sequence[Place], width: int = 800, height: int = 500) -> bytes:
    """
    Render all places with numeric coordinates as markers on a PNG.

    Uses raster tiles when enabled and reachable, a plain grid otherwise.
    """
    points = [(float(p.lat), float(p.lng)) for p in places if p.has_coordinates]
    zoom = _pick_zoom(points, width, height)

    if points:
        xs, ys = zip(*(_latlon_to_tile_xy(lat, lon, zoom) for lat, lon in points))
        center_x = (min(xs) + max(xs)) / 2 * TILE_SIZE
        center_y = (min(ys) + max(ys)) / 2 * TILE_SIZE
    else:
        cx, cy = _latlon_to_tile_xy(DEFAULT_CENTER[0], DEFAULT_CENTER[1], zoom)
        center_x, center_y = cx * TILE_SIZE, cy * TILE_SIZE
    origin_x = center_x - width / 2
    origin_y = center_y - height / 2

    img = Image.new("RGB", (width, height), GRID_BACKGROUND)
    if not _draw_tile_background(img, zoom, origin_x, origin_y):
        _draw_grid(img)

    draw = ImageDraw.Draw(img)
    for lat, lon in points:
        tx, ty = _latlon_to_tile_xy(lat, lon, zoom)
        x = tx * TILE_SIZE - origin_x
        y = ty * TILE_SIZE - origin_y
        r = MARKER_RADIUS
        draw.ellipse((x - r, y - r, x + r, y + r), fill=MARKER_FILL, outline=MARKER_OUTLINE, width=2)

    logger.debug("Rendered static map with %d markers at zoom %d", len(points), zoom)
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()

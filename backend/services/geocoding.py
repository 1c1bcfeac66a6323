"""Lightweight reverse geocoding helpers using OpenStreetMap Nominatim.

``lookup`` is the only entry point callers need: it never raises and
returns an empty PlaceMeta when the service is disabled, unreachable or
answers with something unusable.
"""

from __future__ import annotations

import dataclasses
import json
import os
import time
import threading
import logging
import re
import sqlite3
from functools import lru_cache
from typing import Any, Optional

import requests

from domain.models import PlaceMeta
from settings import BASE_DIR, settings

NOMINATIM_BASE_URL = "https://nominatim.openstreetmap.org/reverse"
NOMINATIM_ZOOM = 10
logger = logging.getLogger(__name__)
_session = requests.Session()
_last_request_ts: float = 0.0
_lock = threading.Lock()
_MIN_INTERVAL_SEC = float(os.getenv("NOMINATIM_MIN_INTERVAL", "1.1"))
_REQUEST_TIMEOUT_SEC = float(os.getenv("NOMINATIM_TIMEOUT", "5"))
_logged_ua = False
NOMINATIM_USER_AGENT = os.getenv("NOMINATIM_USER_AGENT")
NOMINATIM_REFERER = os.getenv("NOMINATIM_REFERER")
NOMINATIM_CACHE_PATH = os.getenv("NOMINATIM_CACHE_PATH")
if not NOMINATIM_CACHE_PATH:
    NOMINATIM_CACHE_PATH = str(BASE_DIR / "data" / "geocode_cache.sqlite")
NOMINATIM_CACHE_TTL_SECONDS = int(os.getenv("NOMINATIM_CACHE_TTL_SECONDS", str(180 * 24 * 3600)))
GEOCODE_ENABLED = settings.GEOCODE_ENABLED

# Address keys tried in order when picking the city name.
CITY_KEYS = ("city", "town", "village", "county")

FALLBACK_UA = "places-map/0.1 (contact: example@example.com)"
if NOMINATIM_USER_AGENT is None:
    logger.warning(
        "NOMINATIM_USER_AGENT not set in environment; using fallback UA. "
        "This may violate Nominatim usage policy."
    )


def _redact_email(ua: str) -> str:
    if "@" not in ua:
        return ua
    return re.sub(r"\S+@\S+", "<redacted>", ua)


_ua_value = NOMINATIM_USER_AGENT or FALLBACK_UA
NOMINATIM_HEADERS = {
    "User-Agent": _ua_value,
    "Accept-Language": "en",
}
if NOMINATIM_REFERER:
    NOMINATIM_HEADERS["Referer"] = NOMINATIM_REFERER

_CACHE_DB_LOCK = threading.Lock()
_CACHE_DB: Optional[sqlite3.Connection] = None


class GeocodeError(Exception):
    """Raised internally when a reverse lookup produced no usable result."""


def _round_coord(value: float, decimals: int = 4) -> float:
    """Round coordinates before caching / lookup to limit request diversity."""
    return round(value, decimals)


def _throttled_get(
    url: str,
    *,
    params: dict[str, Any],
    headers: dict[str, str],
    timeout: float,
) -> requests.Response:
    """Perform a GET request with a simple global rate limit."""
    global _last_request_ts
    with _lock:
        now = time.time()
        delta = now - _last_request_ts
        if delta < _MIN_INTERVAL_SEC:
            time.sleep(_MIN_INTERVAL_SEC - delta)
        _last_request_ts = time.time()
    return _session.get(url, params=params, headers=headers, timeout=timeout)


def _get_geocode_db() -> sqlite3.Connection:
    """Lazily open the geocode cache DB and ensure schema exists."""
    global _CACHE_DB
    with _CACHE_DB_LOCK:
        if _CACHE_DB is None:
            cache_dir = os.path.dirname(NOMINATIM_CACHE_PATH)
            if cache_dir:
                os.makedirs(cache_dir, exist_ok=True)
            _CACHE_DB = sqlite3.connect(NOMINATIM_CACHE_PATH, check_same_thread=False)
            _CACHE_DB.execute(
                """
                CREATE TABLE IF NOT EXISTS geocodes (
                    lat REAL NOT NULL,
                    lon REAL NOT NULL,
                    zoom INTEGER NOT NULL,
                    fetched_at INTEGER NOT NULL,
                    meta_json TEXT NOT NULL,
                    PRIMARY KEY (lat, lon, zoom)
                )
                """
            )
            _CACHE_DB.commit()
        return _CACHE_DB


def _get_geocode_from_cache(lat: float, lon: float, zoom: int) -> Optional[PlaceMeta]:
    """Lookup geocode result in SQLite cache respecting TTL."""
    try:
        db = _get_geocode_db()
        with _CACHE_DB_LOCK:
            row = db.execute(
                "SELECT fetched_at, meta_json FROM geocodes WHERE lat=? AND lon=? AND zoom=?",
                (lat, lon, zoom),
            ).fetchone()
    except (sqlite3.Error, OSError) as exc:
        logger.warning("Geocode cache read failed for %s,%s z=%s: %s", lat, lon, zoom, exc)
        return None
    if not row:
        logger.debug("Geocode cache miss %s,%s z=%s", lat, lon, zoom)
        return None
    fetched_at, meta_json = row
    if NOMINATIM_CACHE_TTL_SECONDS > 0:
        age = time.time() - (fetched_at or 0)
        if age > NOMINATIM_CACHE_TTL_SECONDS:
            logger.debug("Geocode cache expired %s,%s z=%s", lat, lon, zoom)
            return None
    try:
        meta = PlaceMeta.from_dict(json.loads(meta_json))
    except ValueError:
        return None
    logger.debug("Geocode cache hit %s,%s z=%s", lat, lon, zoom)
    return None if meta.is_empty else meta


def _store_geocode_in_cache(lat: float, lon: float, zoom: int, meta: PlaceMeta) -> None:
    """Upsert geocode result into SQLite cache."""
    try:
        db = _get_geocode_db()
        with _CACHE_DB_LOCK:
            db.execute(
                "INSERT OR REPLACE INTO geocodes (lat, lon, zoom, fetched_at, meta_json) VALUES (?, ?, ?, ?, ?)",
                (lat, lon, zoom, int(time.time()), json.dumps(meta.to_dict())),
            )
            db.commit()
    except (sqlite3.Error, OSError) as exc:
        logger.warning("Geocode cache write failed for %s,%s z=%s: %s", lat, lon, zoom, exc)


def parse_reverse_response(data: Any) -> PlaceMeta:
    """Extract display name, city and country from a Nominatim reverse payload."""
    if not isinstance(data, dict):
        raise GeocodeError("Response is not a JSON object")
    address = data.get("address") or {}
    if not isinstance(address, dict):
        address = {}
    city = next((address[k] for k in CITY_KEYS if address.get(k)), None)
    return PlaceMeta(
        display_name=data.get("display_name") or None,
        city=city,
        country=address.get("country") or None,
    )


@lru_cache(maxsize=512)
def reverse_geocode(lat: float, lon: float) -> PlaceMeta:
    """Reverse geocode a coordinate into a PlaceMeta using Nominatim.

    Raises GeocodeError on network, HTTP or parsing errors; failures are
    not cached. Inputs are expected to be rounded already.
    """
    cached = _get_geocode_from_cache(lat, lon, NOMINATIM_ZOOM)
    if cached:
        return cached

    global _logged_ua
    if not _logged_ua:
        logger.debug("Nominatim User-Agent: %s", _redact_email(_ua_value))
        _logged_ua = True

    params = {
        "format": "json",
        "lat": str(lat),
        "lon": str(lon),
        "zoom": str(NOMINATIM_ZOOM),
        "addressdetails": "1",
    }

    try:
        resp = _throttled_get(
            NOMINATIM_BASE_URL, params=params, headers=NOMINATIM_HEADERS, timeout=_REQUEST_TIMEOUT_SEC
        )
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise GeocodeError(f"request failed: {exc}") from exc

    try:
        data = resp.json()
    except ValueError as exc:
        raise GeocodeError(f"invalid JSON: {exc}") from exc

    meta = parse_reverse_response(data)
    if meta.is_empty:
        raise GeocodeError("no address details in response")
    _store_geocode_in_cache(lat, lon, NOMINATIM_ZOOM, meta)
    return meta


def lookup(lat: float, lng: float) -> PlaceMeta:
    """Return enrichment for a coordinate, or an empty PlaceMeta on any failure."""
    if not GEOCODE_ENABLED:
        return PlaceMeta()
    try:
        lat_r = _round_coord(float(lat))
        lon_r = _round_coord(float(lng))
    except (TypeError, ValueError):
        logger.warning("Reverse geocode skipped for non-numeric coordinates %r,%r", lat, lng)
        return PlaceMeta()
    try:
        meta = reverse_geocode(lat_r, lon_r)
    except GeocodeError as exc:
        logger.warning("Reverse geocode failed for lat=%s lon=%s: %s", lat_r, lon_r, exc)
        return PlaceMeta()
    # the cached instance is shared; hand out a copy
    return dataclasses.replace(meta)

import io
from unittest.mock import MagicMock

import pytest
from PIL import Image

from domain.models import Place, PlaceMeta
from services import map_surface as ms


def _place(pid, lat, lng, **kwargs):
    return Place(id=pid, lat=lat, lng=lng, **kwargs)


def test_marker_popup_content():
    place = _place(
        "p1", 40.0, -74.0, title="Home", notes="notes",
        meta=PlaceMeta(display_name="Jersey City, NJ, USA", city="Jersey City", country="USA"),
    )
    marker = ms.build_marker(place)
    assert (marker.lat, marker.lng) == (40.0, -74.0)
    assert marker.popup.title == "Home"
    assert marker.popup.subtitle == "Jersey City, USA"
    assert marker.popup.notes == "notes"
    assert marker.popup.details == "Jersey City, NJ, USA"


def test_marker_subtitle_with_partial_meta():
    assert ms.build_marker(_place("a", 1.0, 2.0, meta=PlaceMeta(country="USA"))).popup.subtitle == "USA"
    assert ms.build_marker(_place("b", 1.0, 2.0)).popup.subtitle == ""


def test_places_without_numeric_coordinates_get_no_marker():
    view = ms.build_map_view([_place("ok", 1.0, 2.0), _place("bad", "north", None)])
    assert [m.place_id for m in view.markers] == ["ok"]


def test_map_view_defaults():
    data = ms.build_map_view([]).to_dict()
    assert data["center"] == {"lat": 39.8283, "lng": -98.5795}
    assert data["zoom"] == 4
    assert data["tileLayer"]["url"] == "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png"
    assert data["tileLayer"]["attribution"] == "© OpenStreetMap contributors"
    assert data["markers"] == []


def test_list_panel_texts():
    collecting = ms.list_panel([], is_collecting=True, show_list=True)
    assert collecting["heading"] == "Places (click map to add)"
    assert collecting["emptyHint"] == "No places yet. Click on the map to start."
    assert collecting["toggleLabel"] is None

    done = ms.list_panel([], is_collecting=False, show_list=False)
    assert done["heading"] == "Places"
    assert done["emptyHint"] == "No places yet. Use Import JSON to load some."
    assert done["toggleLabel"] == "Show List"

    rows = ms.list_panel([_place("a", 1.0, 2.0, title="A")], is_collecting=False, show_list=True)
    assert rows["emptyHint"] is None
    assert rows["toggleLabel"] == "Hide List"
    assert rows["items"][0]["title"] == "A"


@pytest.fixture
def no_tiles(monkeypatch):
    monkeypatch.setattr(ms, "MAP_TILES_ENABLED", False)
    ms._fetch_tile_cached.cache_clear()


@pytest.mark.parametrize(
    "places",
    [
        [],
        [_place("a", 40.0, -74.0)],
        [_place("a", 40.0, -74.0), _place("b", 51.5, -0.12), _place("c", "bad", None)],
    ],
)
def test_render_static_map_without_tiles(no_tiles, places):
    png = ms.render_static_map(places, width=320, height=200)
    img = Image.open(io.BytesIO(png))
    assert img.format == "PNG"
    assert img.size == (320, 200)


def test_render_draws_marker_at_single_place(no_tiles):
    png = ms.render_static_map([_place("a", 10.0, 10.0)], width=200, height=200)
    img = Image.open(io.BytesIO(png)).convert("RGB")
    assert img.getpixel((100, 100)) == ms.MARKER_FILL


def test_pick_zoom_fits_far_apart_points():
    near = ms._pick_zoom([(40.0, -74.0), (40.01, -74.01)], 800, 500)
    far = ms._pick_zoom([(40.0, -74.0), (51.5, -0.12)], 800, 500)
    assert near > far


def _tile_bytes(color="blue"):
    img = Image.new("RGB", (8, 8), color=color)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def test_fetch_tile_cached_uses_sqlite_cache(monkeypatch, tmp_path):
    monkeypatch.setattr(ms, "MAP_TILES_ENABLED", True)
    monkeypatch.setattr(ms, "MAP_TILE_URL_TEMPLATE", "http://example/{z}/{x}/{y}.png")
    monkeypatch.setattr(ms, "MAP_TILE_CACHE_PATH", tmp_path / "tiles.sqlite")
    monkeypatch.setattr(ms, "MAP_TILE_MIN_INTERVAL_SEC", 0.0)
    monkeypatch.setattr(ms, "_CACHE_DB", None, raising=False)
    ms._fetch_tile_cached.cache_clear()

    call_counter = {"count": 0}

    def fake_get(url, headers=None, timeout=None):
        call_counter["count"] += 1
        resp = MagicMock()
        resp.content = _tile_bytes()
        resp.raise_for_status.return_value = None
        return resp

    monkeypatch.setattr(ms._TILE_SESSION, "get", fake_get)

    tile1 = ms._fetch_tile_cached(1, 0, 1)
    ms._fetch_tile_cached.cache_clear()
    tile2 = ms._fetch_tile_cached(1, 0, 1)

    assert tile1 is not None
    assert tile2 is not None
    assert call_counter["count"] == 1
    assert (tmp_path / "tiles.sqlite").exists()
    ms._CACHE_DB.close()
    ms._fetch_tile_cached.cache_clear()


def test_fetch_tile_survives_unusable_cache_path(monkeypatch, tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    monkeypatch.setattr(ms, "MAP_TILES_ENABLED", True)
    monkeypatch.setattr(ms, "MAP_TILE_URL_TEMPLATE", "http://example/{z}/{x}/{y}.png")
    monkeypatch.setattr(ms, "MAP_TILE_CACHE_PATH", blocker / "sub" / "tiles.sqlite")
    monkeypatch.setattr(ms, "MAP_TILE_MIN_INTERVAL_SEC", 0.0)
    monkeypatch.setattr(ms, "_CACHE_DB", None, raising=False)
    ms._fetch_tile_cached.cache_clear()

    resp = MagicMock()
    resp.content = _tile_bytes()
    resp.raise_for_status.return_value = None
    monkeypatch.setattr(ms._TILE_SESSION, "get", lambda url, headers=None, timeout=None: resp)

    assert ms._fetch_tile_cached(2, 1, 1) is not None
    ms._fetch_tile_cached.cache_clear()

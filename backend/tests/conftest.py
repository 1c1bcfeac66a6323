import os
import sys
import tempfile
from pathlib import Path

import pytest

# Ensure the backend package root is on sys.path for direct pytest runs
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Keep module-level defaults away from the real data directory
_TEST_DATA_DIR = Path(tempfile.mkdtemp(prefix="places-map-tests-"))
os.environ.setdefault("PLACES_DB_PATH", str(_TEST_DATA_DIR / "places.db"))
os.environ.setdefault("NOMINATIM_CACHE_PATH", str(_TEST_DATA_DIR / "geocode_cache.sqlite"))
os.environ.setdefault("MAP_TILE_CACHE_PATH", str(_TEST_DATA_DIR / "tile_cache.sqlite"))
os.environ.setdefault("NOMINATIM_USER_AGENT", "places-map-tests/0.1")
os.environ.setdefault("NOMINATIM_MIN_INTERVAL", "0")
os.environ.setdefault("MAP_TILES_ENABLED", "0")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from db import init_db  # noqa: E402
from domain.models import PlaceMeta  # noqa: E402
from services.app_store import PlacesStore  # noqa: E402
from storage.state_storage import StateStorage  # noqa: E402


class FakeGeocoder:
    """Records lookups and answers with a fixed PlaceMeta."""

    def __init__(self, meta=None):
        self.meta = meta if meta is not None else PlaceMeta()
        self.calls = []

    def __call__(self, lat, lng):
        self.calls.append((lat, lng))
        return self.meta


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'state.db'}", connect_args={"check_same_thread": False}
    )
    init_db(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    engine.dispose()


@pytest.fixture
def storage(session_factory):
    return StateStorage(session_factory, "test-places")


@pytest.fixture
def geocoder():
    return FakeGeocoder(PlaceMeta(display_name="Jersey City, Hudson County, USA", city="Jersey City", country="USA"))


@pytest.fixture
def store(storage, geocoder):
    return PlacesStore.load(storage, geocoder=geocoder)

import os
from pathlib import Path

# Basic settings helper to read environment configuration.

BASE_DIR = Path(__file__).resolve().parent


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


class Settings:
    def __init__(self) -> None:
        self.PLACES_DB_PATH: str = os.getenv("PLACES_DB_PATH", str(BASE_DIR / "data" / "places.db"))
        self.PLACES_STORAGE_KEY: str = os.getenv("PLACES_STORAGE_KEY", "cs465-places-v1")
        self.GEOCODE_ENABLED: bool = _as_bool(os.getenv("GEOCODE_ENABLED"), True)
        self.MAP_TILES_ENABLED: bool = _as_bool(os.getenv("MAP_TILES_ENABLED"), False)
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")

_DATA_DIR = Path(__file__).resolve().parent.parent / "data"


@dataclass(frozen=True)
class PlacesConfig:
    api_key: str = os.getenv("GOOGLE_PLACES_API_KEY", "")
    enabled: bool = os.getenv("PLACES_ENABLED", "true").lower() == "true"
    base_url: str = "https://places.googleapis.com/v1"
    geocode_url: str = "https://maps.googleapis.com/maps/api/geocode/json"
    timeout: float = 6.0
    daily_ceiling: int = int(os.getenv("PLACES_DAILY_CEILING", "100"))
    max_results: int = 20

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.api_key)


@dataclass(frozen=True)
class CatalogConfig:
    places_path: Path = _DATA_DIR / "places.csv"
    lists_path: Path = _DATA_DIR / "lists.csv"
    users_path: Path = _DATA_DIR / "users.csv"
    preferences_path: Path = _DATA_DIR / "preferences.csv"
    known_keys_limit: int = 5000


DEFAULT_PLACES_CONFIG = PlacesConfig()
DEFAULT_CATALOG_CONFIG = CatalogConfig()

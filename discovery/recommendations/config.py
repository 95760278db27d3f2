from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")


@dataclass(frozen=True)
class DiscoveryConfig:
    default_radius_km: float = float(os.getenv("DISCOVERY_DEFAULT_RADIUS_KM", "80"))
    miles_to_km: float = 1.60934
    freshness_window_s: float = 120.0  # 2 minutes
    rotation_cap: int = 100
    min_unseen: int = 8
    max_tag_affinities: int = 8
    device_position_timeout_s: float = 6.0
    source_timeout_s: float = float(os.getenv("DISCOVERY_SOURCE_TIMEOUT_S", "8"))
    default_limit: int = 20
    nearby_reason_km: float = 2.0


DEFAULT_DISCOVERY_CONFIG = DiscoveryConfig()

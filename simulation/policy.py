"""
Purpose: Central configuration for the journey simulation (single source of truth).
What it does:

Stores all tunable speeds, radii and timings:

BASE_SPEED_KMH = 120

SPEED_MULTIPLIER = 50

TICK_INTERVAL_SECONDS = 0.5

GEOFENCE_RADIUS_KM = 10, REDZONE_RADIUS_KM = 10

STOPPAGE_COUNT = 2

UNLOADING_DURATION_SECONDS = 5

A SimulationConfig is passed into the engine/run at construction; nothing
reads module-level state at tick time.

Rule: No logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet

from routing.eta_service import MAX_PROGRESS_DELTA, validate_speed
from routing.geofence import GEOFENCE_RADIUS_KM, REDZONE_CATEGORIES, REDZONE_RADIUS_KM
from routing.models import ZoneCategory
from routing.route_service import HEADING_EPSILON


@dataclass(frozen=True)
class SimulationConfig:
    """
    Central configuration for one simulation run.

    Notes:
    - simulated speed is base_speed_kmh * speed_multiplier.
    - max_progress_delta caps a single tick so fast playback cannot skip
      stoppage or geofence checkpoints.
    """

    # --- Movement ---
    base_speed_kmh: float = 120.0
    speed_multiplier: float = 50.0
    max_progress_delta: float = MAX_PROGRESS_DELTA
    heading_epsilon: float = HEADING_EPSILON

    # --- Scheduler ---
    # Wall-clock seconds between ticks.
    tick_interval_seconds: float = 0.5

    # --- Stoppages ---
    stoppage_count: int = 2

    # --- Geofence / redzones ---
    geofence_radius_km: float = GEOFENCE_RADIUS_KM
    redzone_radius_km: float = REDZONE_RADIUS_KM
    redzone_categories: FrozenSet[ZoneCategory] = field(default_factory=lambda: REDZONE_CATEGORIES)

    # --- Arrival ---
    # Simulated seconds spent unloading before the journey completes.
    unloading_duration_seconds: float = 5.0

    # "Jump near destination" control
    jump_progress: float = 0.85

    def validate(self) -> None:
        """
        Basic sanity checks. Call once before a run starts.
        Raises InvalidSpeedError for speeds, ValueError for the rest.
        """
        validate_speed(self.base_speed_kmh, self.speed_multiplier)

        if not 0 < self.max_progress_delta <= 1:
            raise ValueError("max_progress_delta must be in (0, 1]")

        if self.heading_epsilon <= 0:
            raise ValueError("heading_epsilon must be > 0")

        if self.tick_interval_seconds <= 0:
            raise ValueError("tick_interval_seconds must be > 0")

        if self.stoppage_count < 0:
            raise ValueError("stoppage_count must be >= 0")

        if self.geofence_radius_km <= 0 or self.redzone_radius_km <= 0:
            raise ValueError("geofence and redzone radii must be > 0")

        if self.unloading_duration_seconds < 0:
            raise ValueError("unloading_duration_seconds must be >= 0")

        if not 0 <= self.jump_progress <= 1:
            raise ValueError("jump_progress must be in [0, 1]")


def default_config() -> SimulationConfig:
    """
    Convenience factory for the default config (the dashboard defaults).
    """
    c = SimulationConfig()
    c.validate()
    return c


def realtime_config() -> SimulationConfig:
    """
    Example: real-time playback at 60 km/h, one tick per second.
    """
    c = SimulationConfig(
        base_speed_kmh=60.0,
        speed_multiplier=1.0,
        tick_interval_seconds=1.0,
    )
    c.validate()
    return c

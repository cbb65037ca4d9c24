#Purpose: Progress and ETA policy.
#Converts elapsed (simulated) time into route progress and progress into
#remaining distance and ETA, used by:
#the simulation tick (where is the truck now)
#the journey card ("arrives in X")
#Keeps ETA logic separate from route geometry (route_service.py).

from typing import Tuple

# Cap on how far a single call can move the truck. Large speed multipliers
# would otherwise jump over stoppage and geofence checkpoints.
MAX_PROGRESS_DELTA = 0.01


class InvalidSpeedError(ValueError):
    """Raised for a non-positive base speed or speed multiplier."""
    pass


def validate_speed(base_speed_kmh: float, speed_multiplier: float) -> None:
    if base_speed_kmh is None or base_speed_kmh <= 0:
        raise InvalidSpeedError(f"base_speed_kmh must be > 0, got {base_speed_kmh}")
    if speed_multiplier is None or speed_multiplier <= 0:
        raise InvalidSpeedError(f"speed_multiplier must be > 0, got {speed_multiplier}")


def advance_progress(
    current_progress: float,
    delta_seconds: float,
    total_distance_km: float,
    speed_multiplier: float = 1.0,
    base_speed_kmh: float = 60.0,
    max_progress_delta: float = MAX_PROGRESS_DELTA,
) -> float:
    """
    New progress after `delta_seconds` of wall-clock time.

        distance = (base_speed_kmh * speed_multiplier / 3600) * delta_seconds
        delta    = min(distance / total_distance_km, max_progress_delta)

    The result is clamped to [current_progress, 1], so progress never goes
    backwards (negative deltas count as zero).
    """
    validate_speed(base_speed_kmh, speed_multiplier)

    current_progress = min(max(current_progress, 0.0), 1.0)
    if total_distance_km <= 0:
        # nothing to travel
        return 1.0
    if delta_seconds <= 0:
        return current_progress

    distance_travelled_km = (base_speed_kmh * speed_multiplier / 3600.0) * delta_seconds
    progress_delta = min(distance_travelled_km / total_distance_km, max_progress_delta)

    return min(current_progress + progress_delta, 1.0)


def remaining_distance_km(total_distance_km: float, progress: float) -> float:
    return total_distance_km * (1.0 - progress)


def eta_minutes(remaining_km: float, base_speed_kmh: float = 60.0, speed_multiplier: float = 1.0) -> float:
    """Minutes to cover remaining_km at base_speed_kmh * speed_multiplier."""
    validate_speed(base_speed_kmh, speed_multiplier)
    return (remaining_km / (base_speed_kmh * speed_multiplier)) * 60.0


def estimate_eta(
    total_distance_km: float,
    progress: float,
    base_speed_kmh: float,
    speed_multiplier: float,
) -> Tuple[float, float]:
    """
    Convenience: (remaining_km, eta_minutes) at `progress` on a route of total_distance_km.
    """
    remaining = remaining_distance_km(total_distance_km, progress)
    return remaining, eta_minutes(remaining, base_speed_kmh, speed_multiplier)

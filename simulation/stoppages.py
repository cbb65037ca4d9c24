#Purpose: Randomized stoppages along a route.
#generate_stoppages: draw positions/durations when a journey is loaded
#check_for_stoppage: is the truck at an untriggered stoppage right now?
#find_passed_stoppage: did the last tick step over one without landing on it?
#countdown_stoppage: burn down an active stoppage's remaining time
#Marking a stoppage triggered is the caller's job (the tick does it once).

import random
from typing import List, Optional, Sequence

from simulation.models import Stoppage

STOPPAGE_POSITION_RANGE = (0.2, 0.8)
STOPPAGE_DURATION_RANGE_SECONDS = (10.0, 20.0)
STOPPAGE_TOLERANCE = 0.005


def generate_stoppages(count: int = 2, rng: Optional[random.Random] = None) -> List[Stoppage]:
    """
    count stoppages with position ~ U[0.2, 0.8] and duration ~ U[10, 20] seconds,
    sorted by position. Pass a seeded random.Random for reproducible runs.
    """
    if count < 0:
        raise ValueError("count must be >= 0")

    rng = rng or random.Random()
    stoppages = [
        Stoppage(
            position=rng.uniform(*STOPPAGE_POSITION_RANGE),
            duration_seconds=rng.uniform(*STOPPAGE_DURATION_RANGE_SECONDS),
        )
        for _ in range(count)
    ]
    return sorted(stoppages, key=lambda s: s.position)


def check_for_stoppage(
    progress: float,
    stoppages: Sequence[Stoppage],
    tolerance: float = STOPPAGE_TOLERANCE,
) -> Optional[Stoppage]:
    """
    First untriggered stoppage with |progress - position| < tolerance.

    Does not mark anything: calling it again before the caller sets
    triggered=True returns the same stoppage.
    """
    for stoppage in stoppages:
        if stoppage.triggered:
            continue
        if abs(progress - stoppage.position) < tolerance:
            return stoppage
    return None


def find_passed_stoppage(
    previous_progress: float,
    progress: float,
    stoppages: Sequence[Stoppage],
) -> Optional[Stoppage]:
    """
    First untriggered stoppage with previous_progress < position <= progress.
    A full-size step can land exactly tolerance past a stoppage.
    """
    for stoppage in stoppages:
        if stoppage.triggered:
            continue
        if previous_progress < stoppage.position <= progress:
            return stoppage
    return None


def countdown_stoppage(stoppage: Stoppage, delta_seconds: float, speed_multiplier: float) -> bool:
    """
    Decrement the stoppage's remaining duration by delta_seconds * speed_multiplier.
    Returns True once the stoppage is over (remaining <= 0).
    """
    stoppage.duration_seconds -= max(delta_seconds, 0.0) * speed_multiplier
    return stoppage.duration_seconds <= 0

"""
Purpose: Domain models for the simulation capability.
What it does:
- Stoppage (position along the route, duration, triggered flag)
- SimulationState (everything that changes tick to tick for one journey view)

Rule: No routing calls, no tick logic. Models only.
"""
from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field, replace
from typing import FrozenSet, List, Optional

from journeys.models import JourneyStatus
from routing.models import GeoPoint


@dataclass
class Stoppage:
    """
    A randomized halt along the route, owned by one run.
    duration_seconds counts down while the stoppage is active.
    """
    position: float
    duration_seconds: float
    triggered: bool = False


@dataclass
class SimulationState:
    """
    Ephemeral state of one active journey simulation.

    Created when a run starts, replaced every tick, reset on explicit reset,
    dropped when the journey selection changes. generation identifies the
    run so late async results can be recognised as stale.
    """
    progress: float
    position: GeoPoint
    heading: float
    remaining_distance_km: float
    eta_minutes: float
    total_distance_km: float

    stoppages: List[Stoppage] = field(default_factory=list)
    active_stoppage: Optional[Stoppage] = None

    # latches
    geofence_entered: bool = False
    redzone_triggered_zone_id: Optional[str] = None
    resolved_zone_ids: FrozenSet[str] = frozenset()

    is_on_detour: bool = False
    status: JourneyStatus = JourneyStatus.NOT_STARTED
    is_running: bool = False
    unloading_remaining_seconds: Optional[float] = None

    simulated_seconds: float = 0.0
    generation: int = 0

    def copy(self, **changes) -> SimulationState:
        """Deep enough copy for a pure tick: stoppages are mutable."""
        stoppages = deepcopy(self.stoppages)
        active = None
        if self.active_stoppage is not None:
            index = self.stoppages.index(self.active_stoppage)
            active = stoppages[index]
        return replace(self, stoppages=stoppages, active_stoppage=active, **changes)

    @property
    def is_finished(self) -> bool:
        return self.status == JourneyStatus.COMPLETED

"""
Purpose: The tick transition, tick(state, ...) -> TickResult.
What it does:
One fixed-interval step of a journey simulation:

1. unloading countdown (after arrival), else
2. active stoppage countdown (truck is halted), else
3. advance progress (capped), interpolate position and heading, recompute
   remaining distance and ETA
4. stoppage check (tolerance hit or stepped over)
5. destination geofence check (one-shot latch)
6. redzone approach check (latched, nearest zone wins)
7. arrival (progress reached 1) -> UNLOADING

tick never mutates the state it is given; it returns a copy. It does not
pause, call anyone or detour: the TickResult flags tell the orchestrator
what happened and it decides.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from journeys.models import JourneyStatus
from journeys.state_machine import resume_status, transition_status
from routing.eta_service import advance_progress, estimate_eta
from routing.geofence import RedzoneApproach, check_geofence, find_redzone_approach
from routing.models import GeoPoint, Zone
from routing.route_service import Route, heading_at, interpolate
from simulation.events import (
    Arrived,
    GeofenceEntered,
    RedzoneApproached,
    SimulationEvent,
    StoppageEnded,
    StoppageStarted,
    UnloadingCompleted,
)
from simulation.models import SimulationState, Stoppage
from simulation.policy import SimulationConfig
from simulation.stoppages import check_for_stoppage, countdown_stoppage, find_passed_stoppage

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    state: SimulationState
    events: List[SimulationEvent] = field(default_factory=list)
    stoppage: Optional[Stoppage] = None
    geofence_entered: bool = False
    redzone: Optional[RedzoneApproach] = None
    arrived: bool = False
    completed: bool = False


def initial_state(
    route: Route,
    config: SimulationConfig,
    stoppages: Optional[List[Stoppage]] = None,
    generation: int = 0,
) -> SimulationState:
    """
    State at progress 0 on `route`. Raises EmptyRouteError for an empty route
    and InvalidSpeedError for a bad config, both before any tick happens.
    """
    config.validate()
    position = interpolate(route, 0.0)
    total = route.total_km
    remaining, eta = estimate_eta(total, 0.0, config.base_speed_kmh, config.speed_multiplier)

    return SimulationState(
        progress=0.0,
        position=position,
        heading=heading_at(route, 0.0, config.heading_epsilon),
        remaining_distance_km=remaining,
        eta_minutes=eta,
        total_distance_km=total,
        stoppages=list(stoppages or []),
        generation=generation,
    )


def place_at(state: SimulationState, route: Route, progress: float, config: SimulationConfig) -> SimulationState:
    """Copy of state moved to `progress` on `route` (position, heading, distance, ETA)."""
    progress = min(max(progress, 0.0), 1.0)
    remaining, eta = estimate_eta(state.total_distance_km, progress, config.base_speed_kmh, config.speed_multiplier)
    return state.copy(
        progress=progress,
        position=interpolate(route, progress),
        heading=heading_at(route, progress, config.heading_epsilon),
        remaining_distance_km=remaining,
        eta_minutes=eta,
    )


def tick(
    state: SimulationState,
    config: SimulationConfig,
    route: Route,
    destination: GeoPoint,
    zones: Sequence[Zone],
    delta_seconds: float,
    journey_id: Optional[str] = None,
    assigned_load_id: Optional[str] = None,
) -> TickResult:
    if not state.is_running or state.is_finished:
        return TickResult(state=state)

    def event(payload) -> SimulationEvent:
        return SimulationEvent.of(payload, journey_id=journey_id, generation=state.generation)

    new = state.copy(simulated_seconds=state.simulated_seconds + max(delta_seconds, 0.0))
    result = TickResult(state=new)

    # 1. Unloading
    if new.status == JourneyStatus.UNLOADING:
        new.unloading_remaining_seconds = (new.unloading_remaining_seconds or 0.0) - max(delta_seconds, 0.0)
        if new.unloading_remaining_seconds <= 0:
            new.unloading_remaining_seconds = 0.0
            new.status = transition_status(new.status, JourneyStatus.COMPLETED)
            new.is_running = False
            result.completed = True
            result.events.append(event(UnloadingCompleted(assigned_load_id)))
        return result

    # 2. Halted at a stoppage
    if new.active_stoppage is not None:
        if countdown_stoppage(new.active_stoppage, delta_seconds, config.speed_multiplier):
            result.events.append(event(StoppageEnded(new.active_stoppage.position, new.progress)))
            new.active_stoppage = None
            new.status = transition_status(new.status, resume_status(new.geofence_entered))
        return result

    # 3. Movement
    previous_progress = new.progress
    progress = advance_progress(
        previous_progress,
        delta_seconds,
        new.total_distance_km,
        speed_multiplier=config.speed_multiplier,
        base_speed_kmh=config.base_speed_kmh,
        max_progress_delta=config.max_progress_delta,
    )
    remaining, eta = estimate_eta(new.total_distance_km, progress, config.base_speed_kmh, config.speed_multiplier)
    new.progress = progress
    new.position = interpolate(route, progress)
    new.heading = heading_at(route, progress, config.heading_epsilon)
    new.remaining_distance_km = remaining
    new.eta_minutes = eta

    # 4. Stoppages
    stoppage = check_for_stoppage(progress, new.stoppages) or find_passed_stoppage(
        previous_progress, progress, new.stoppages
    )
    if stoppage is not None and progress < 1.0:
        stoppage.triggered = True
        new.active_stoppage = stoppage
        new.status = transition_status(new.status, JourneyStatus.STOPPAGE)
        result.stoppage = stoppage
        result.events.append(event(StoppageStarted(stoppage.position, stoppage.duration_seconds, progress)))

    # 5. Destination geofence
    check = check_geofence(
        new.position,
        destination,
        radius_km=config.geofence_radius_km,
        already_entered=new.geofence_entered,
    )
    if check.entered:
        new.geofence_entered = True
        if new.status in (JourneyStatus.IN_TRANSIT, JourneyStatus.AT_RISK):
            new.status = transition_status(new.status, JourneyStatus.NEAR_DESTINATION)
        result.geofence_entered = True
        result.events.append(event(GeofenceEntered(check.distance_km, progress)))

    # 6. Redzones
    approach = find_redzone_approach(
        new.position,
        zones,
        radius_km=config.redzone_radius_km,
        categories=config.redzone_categories,
        latched_zone_id=new.redzone_triggered_zone_id,
        ignore_zone_ids=new.resolved_zone_ids,
    )
    if approach is not None:
        new.redzone_triggered_zone_id = approach.zone.id
        result.redzone = approach
        result.events.append(event(RedzoneApproached(
            zone_id=approach.zone.id,
            zone_name=approach.zone.name,
            category=approach.zone.category.value,
            distance_km=approach.distance_km,
            progress=progress,
        )))

    # 7. Arrival
    if progress >= 1.0:
        new.status = transition_status(new.status, JourneyStatus.UNLOADING)
        new.unloading_remaining_seconds = config.unloading_duration_seconds
        result.arrived = True
        result.events.append(event(Arrived(new.total_distance_km, new.simulated_seconds)))
        logger.info(f"Arrived after {new.total_distance_km:.1f} km (generation {new.generation})")

    return result

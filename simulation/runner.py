"""
Purpose: Lifecycle of one journey simulation run.
What it does:
Owns the route, destination, zone list and current SimulationState for one
journey, and is the only writer of that state:

- start / pause / resume
- step(delta_seconds): one tick, stores the new state
- reset: fresh stoppages, progress 0, latches cleared, new generation
- jump: manual "jump near destination"
- substitute_route: swap in a detour route (progress restarts at 0)
- resolve_redzone: clear the redzone latch, remember the zone as handled

Every reset bumps `generation`. Async results (call outcomes, detour routes)
carry the generation they were started under; anything older is stale.
"""

from __future__ import annotations

import logging
import random
from typing import Iterable, List, Optional, Sequence

from journeys.models import Journey, JourneyStatus
from journeys.state_machine import resume_status, transition_status
from routing.models import GeoPoint, Zone
from routing.route_service import Route
from simulation.engine import TickResult, initial_state, place_at, tick
from simulation.events import JourneyStarted, SimulationEvent, SimulationReset
from simulation.models import SimulationState
from simulation.policy import SimulationConfig, default_config
from simulation.stoppages import generate_stoppages

logger = logging.getLogger(__name__)


class SimulationRun:
    """
    One active simulation for one journey.

    Construction validates the config (InvalidSpeedError) and the route
    (EmptyRouteError) so a bad run never starts ticking.
    """

    def __init__(
        self,
        journey: Journey,
        route: Route,
        zones: Sequence[Zone] = (),
        config: Optional[SimulationConfig] = None,
        destination: Optional[GeoPoint] = None,
        rng: Optional[random.Random] = None,
        generation: int = 0,
    ):
        self.journey = journey
        self.config = config or default_config()
        self.zones: List[Zone] = list(zones)
        self.destination = destination or journey.destination
        self._rng = rng or random.Random()
        self._original_route = route
        self.route = route
        self._started = False
        self.state = self._fresh_state(generation)

    # --- Properties ---

    @property
    def generation(self) -> int:
        return self.state.generation

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    @property
    def original_route(self) -> Route:
        return self._original_route

    # --- Controls ---

    def start(self) -> List[SimulationEvent]:
        """Start (or restart after reset). Emits journey-started the first time per generation."""
        events: List[SimulationEvent] = []
        if self.state.is_finished:
            return events

        if self.state.status == JourneyStatus.NOT_STARTED:
            self.state.status = transition_status(self.state.status, JourneyStatus.IN_TRANSIT)

        self.state.is_running = True
        if not self._started:
            self._started = True
            events.append(self._event(JourneyStarted(self.state.total_distance_km, len(self.state.stoppages))))
            logger.info(f"Journey {self.journey.id} started: {self.state.total_distance_km:.1f} km, "
                        f"{len(self.state.stoppages)} stoppages")
        return events

    def pause(self) -> None:
        self.state.is_running = False

    def resume(self) -> None:
        if not self.state.is_finished and self.state.status != JourneyStatus.NOT_STARTED:
            self.state.is_running = True

    def step(self, delta_seconds: float) -> TickResult:
        result = tick(
            self.state,
            self.config,
            self.route,
            self.destination,
            self.zones,
            delta_seconds,
            journey_id=self.journey.id,
            assigned_load_id=self.journey.assigned_load_id,
        )
        self.state = result.state
        return result

    def reset(self) -> SimulationEvent:
        """
        Back to the original route at progress 0 with fresh stoppages.
        Latches are cleared and the generation moves on, so in-flight async
        results for the old generation will be discarded.
        """
        self.route = self._original_route
        self._started = False
        self.state = self._fresh_state(self.state.generation + 1)
        logger.info(f"Journey {self.journey.id} reset (generation {self.state.generation})")
        return self._event(SimulationReset(self.state.generation))

    def jump(self, progress: Optional[float] = None) -> None:
        """
        Move the truck to `progress` (default config.jump_progress). Never
        moves backwards. Triggers are evaluated on the next tick.
        """
        target = self.config.jump_progress if progress is None else progress
        self.state = place_at(self.state, self.route, max(self.state.progress, target), self.config)

    def substitute_route(self, route: Route, is_detour: bool = True) -> None:
        """
        Replace the active route. Progress restarts at 0 against the new
        route's own distance table. Latches and untriggered stoppages carry over.
        """
        self.route = route
        moved = self.state.copy(total_distance_km=route.total_km, is_on_detour=is_detour)
        self.state = place_at(moved, route, 0.0, self.config)

    def resolve_redzone(self, zone_ids: Iterable[str], at_risk: bool = False) -> None:
        """
        The user decided (detour or continue). Clear the latch, never alert on
        these zones again this run, and set the status that follows.
        """
        self.state.resolved_zone_ids = self.state.resolved_zone_ids | frozenset(zone_ids)
        self.state.redzone_triggered_zone_id = None

        if self.state.status in (JourneyStatus.UNLOADING, JourneyStatus.COMPLETED, JourneyStatus.NOT_STARTED):
            return
        if self.state.active_stoppage is not None:
            return
        # a released geofence latch does not take the truck back out of NEAR_DESTINATION
        near = self.state.geofence_entered or self.state.status == JourneyStatus.NEAR_DESTINATION
        target = JourneyStatus.AT_RISK if at_risk else resume_status(near)
        self.state.status = transition_status(self.state.status, target)

    def release_redzone_latch(self) -> None:
        """Clear the latch without resolving the zone, so the alert can fire again."""
        self.state.redzone_triggered_zone_id = None

    # --- Internals ---

    def _fresh_state(self, generation: int) -> SimulationState:
        stoppages = generate_stoppages(self.config.stoppage_count, self._rng)
        return initial_state(self.route, self.config, stoppages=stoppages, generation=generation)

    def _event(self, payload) -> SimulationEvent:
        return SimulationEvent.of(payload, journey_id=self.journey.id, generation=self.state.generation)

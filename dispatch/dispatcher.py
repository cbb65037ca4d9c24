"""
Purpose: Orchestrator / decision pipeline (the "glue").
What it does:
Drives one journey simulation and reacts to what each tick reports:

- geofence entered  -> offer the nearest available load by phone
- redzone approach  -> pause, call the driver about a detour
- call outcome      -> assign/decline the load, or build/skip the detour
- unloading done    -> roll onto the accepted load's route

Routing and calling run through an executor (inline by default). Every
submitted job remembers the run generation it was started under; results for
an older generation (the run was reset or replaced) are dropped.

Collaborator failures never escape a tick: routing failures become a
DETOUR_UNAVAILABLE warning and the truck stays on its current route, call
failures become a CALL_FAILED error event and the latch is released.
"""

from __future__ import annotations

import functools
import logging
import random
from concurrent.futures import Executor, Future, wait
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from journeys.models import Journey
from loads.board import LoadBoard
from loads.models import Load, LoadStatus
from routing.detour import DetourPolicy, DetourResult, DetourRouteBuilder
from routing.models import Zone
from routing.osrm_client import RoutingUnavailableError
from routing.route_cache import RouteProvider
from routing.route_service import Route, nearest_point_index
from simulation.engine import TickResult
from simulation.events import (
    CallFailed,
    CallOutcomeReceived,
    CallTriggered,
    ContinuedThroughRedzone,
    DetourSelected,
    DetourUnavailable,
    LoadAssigned,
    SimulationEvent,
)
from simulation.policy import SimulationConfig, default_config
from simulation.runner import SimulationRun

from .call_outcomes import CallResult, WebhookError, parse_webhook, verify_webhook_signature
from .event_log import EventLog
from .voice_client import CallHandle, CallOutcome, CallPurpose, CallTriggerError

logger = logging.getLogger(__name__)

ZoneSource = Union[Iterable[Zone], Callable[[], Iterable[Zone]]]


@dataclass
class PendingCall:
    handle: CallHandle
    journey_id: str
    generation: int


@dataclass
class NextLoadRoutes:
    """Routes for an accepted load: current destination -> pickup -> drop."""
    load: Load
    to_pickup: Route
    to_drop: Route

    @property
    def combined(self) -> Route:
        points = list(self.to_pickup.points)
        drop_points = self.to_drop.points
        if points and drop_points and points[-1].is_close(drop_points[0]):
            drop_points = drop_points[1:]
        return Route(points + list(drop_points))


@dataclass
class _Job:
    """A unit of async work and what to do with its result."""
    future: Future
    generation: int
    on_done: Callable[[Future], None]
    label: str
    context: Dict[str, Any] = field(default_factory=dict)
    # blocking jobs keep the run paused until they finish
    blocking: bool = True


def _run_inline(fn: Callable, *args, **kwargs) -> Future:
    future: Future = Future()
    try:
        future.set_result(fn(*args, **kwargs))
    except Exception as e:
        future.set_exception(e)
    return future


class Dispatcher:
    """
    Coordinates one journey: simulation run, load calls, redzone calls, detours.

    Args:
        route_provider: routing collaborator (OSRMClient, usually cached).
        voice_client: calling collaborator (RinggClient or a fake).
        load_board: loads that can be offered near the destination.
        zones: zone list or a callable returning one; read once per journey load.
        executor: concurrent.futures executor for routing/calls. None runs inline.
    """

    def __init__(
        self,
        route_provider: RouteProvider,
        voice_client: Any = None,
        load_board: Optional[LoadBoard] = None,
        zones: ZoneSource = (),
        config: Optional[SimulationConfig] = None,
        detour_policy: Optional[DetourPolicy] = None,
        executor: Optional[Executor] = None,
        event_log: Optional[EventLog] = None,
        rng: Optional[random.Random] = None,
        call_on_redzone: bool = True,
        auto_continue_next_load: bool = True,
    ):
        self.route_provider = route_provider
        self.voice_client = voice_client
        self.load_board = load_board or LoadBoard()
        self.config = config or default_config()
        self.detour_builder = DetourRouteBuilder(route_provider, detour_policy)
        self.executor = executor
        self.event_log = event_log or EventLog()
        self.call_on_redzone = call_on_redzone
        self.auto_continue_next_load = auto_continue_next_load

        self._zone_source = zones
        self._rng = rng or random.Random()
        self._last_generation = 0
        self._jobs: List[_Job] = []

        self.run: Optional[SimulationRun] = None
        self.journey: Optional[Journey] = None
        self.zones: List[Zone] = []
        self.pending_calls: Dict[str, PendingCall] = {}
        self.next_load_routes: Optional[NextLoadRoutes] = None
        self.last_detour: Optional[DetourResult] = None

    # ------------------------------------------------------------------
    # Journey lifecycle
    # ------------------------------------------------------------------

    def load_journey(self, journey: Journey) -> SimulationRun:
        """
        Fetch zones (once) and the initial route, and prepare a run.

        Raises:
            RoutingUnavailableError: the initial route could not be fetched.
            EmptyRouteError: the router returned no geometry.
        """
        self.config.validate()
        self.zones = self._fetch_zones()
        result = self.route_provider.get_route(journey.origin, journey.destination)
        route = Route.from_result(result)

        self.journey = journey
        self.next_load_routes = None
        self.last_detour = None
        self.pending_calls.clear()
        self.run = SimulationRun(
            journey,
            route,
            zones=self.zones,
            config=self.config,
            rng=self._rng,
            generation=self._next_generation(),
        )
        logger.info(f"Journey {journey.id} loaded: {journey.origin_city} -> {journey.destination_city}, "
                    f"{route.total_km:.1f} km, {len(self.zones)} zones")
        return self.run

    def start(self) -> None:
        self._record_all(self._require_run().start())

    def pause(self) -> None:
        self._require_run().pause()

    def resume(self) -> None:
        if self._awaiting_decision():
            logger.info("Resume ignored: waiting for a redzone decision")
            return
        self._resume_if_clear()

    def reset(self) -> None:
        """
        Back to the original route. Outstanding calls and jobs become stale,
        and a load accepted during this run goes back on the board.
        """
        run = self._require_run()
        for pending in self.pending_calls.values():
            if pending.handle.purpose == CallPurpose.LOAD_ASSIGNMENT and pending.generation == run.generation:
                self.load_board.release(pending.handle.subject_id)
        for job in self._jobs:
            if "load_id" in job.context and job.generation == run.generation:
                self.load_board.release(job.context["load_id"])

        if self.journey.assigned_load_id is not None:
            load = self.load_board.get(self.journey.assigned_load_id)
            if load is not None and load.status == LoadStatus.ASSIGNED:
                self.load_board.unassign(load.id)
            self.journey = replace(self.journey, assigned_load_id=None)
            run.journey = self.journey
        self.next_load_routes = None
        self._record(run.reset())
        self._last_generation = max(self._last_generation, run.generation)
        self.last_detour = None

    def jump_near_destination(self) -> None:
        self._require_run().jump()

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self, delta_seconds: float) -> Optional[TickResult]:
        """
        One scheduler step: apply finished async results, then advance the
        run and react to its triggers. Returns None when nothing ran.
        """
        self.process_completed()
        if self.run is None:
            return None

        result = self.run.step(delta_seconds)
        self._record_all(result.events)

        if result.geofence_entered:
            self._on_geofence_entered()
        if result.redzone is not None:
            self._on_redzone(result.redzone.zone)
        if result.completed:
            self._on_completed()
        return result

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def _on_geofence_entered(self) -> None:
        run, journey = self._require_run(), self.journey
        if journey.assigned_load_id is not None or self.voice_client is None:
            return

        load = self.load_board.nearest_available_load(
            journey.destination, exclude_ids=self.load_board.declined_for(journey.id)
        )
        if load is None:
            logger.info(f"No available loads to offer journey {journey.id}")
            return

        self.load_board.offer(load.id)
        state = run.state
        # keep the truck still while the call request is in flight
        run.pause()
        self._submit(
            f"load call {load.id}",
            self._on_load_call_started,
            self.voice_client.initiate_load_call,
            journey.id,
            load.id,
            journey.driver_name,
            journey.driver_phone,
            journey.vehicle_number,
            state.position,
            state.eta_minutes,
            context={"load_id": load.id},
        )

    def _on_redzone(self, zone: Zone) -> None:
        run, journey = self._require_run(), self.journey
        run.pause()
        if not self.call_on_redzone or self.voice_client is None:
            return

        self._submit(
            f"detour call {zone.id}",
            self._on_detour_call_started,
            self.voice_client.initiate_detour_call,
            zone.id,
            journey.driver_name,
            journey.driver_phone,
            zone.name,
            run.state.position,
            context={"zone_id": zone.id},
        )

    def _on_completed(self) -> None:
        if self.auto_continue_next_load and self.next_load_routes is not None:
            self.continue_with_next_load()

    # ------------------------------------------------------------------
    # Call start results
    # ------------------------------------------------------------------

    def _on_load_call_started(self, future: Future, load_id: str) -> None:
        run, journey = self._require_run(), self.journey
        error = future.exception()
        if error is not None:
            if not isinstance(error, (CallTriggerError, ValueError)):
                raise error
            logger.error(f"Load call for {load_id} failed: {error}")
            self.load_board.release(load_id)
            self._record(self._event(CallFailed(CallPurpose.LOAD_ASSIGNMENT.value, load_id, str(error))))
            # release the latch so the offer is retried on the next tick
            run.state.geofence_entered = False
            self._resume_if_clear()
            return

        handle: CallHandle = future.result()
        self.pending_calls[handle.call_id] = PendingCall(handle, journey.id, run.generation)
        self._record(self._event(CallTriggered(handle.call_id, handle.purpose.value, handle.subject_id)))
        self._resume_if_clear()

    def _on_detour_call_started(self, future: Future, zone_id: str) -> None:
        run, journey = self._require_run(), self.journey
        error = future.exception()
        if error is not None:
            if not isinstance(error, (CallTriggerError, ValueError)):
                raise error
            logger.error(f"Detour call for zone {zone_id} failed: {error}")
            self._record(self._event(CallFailed(CallPurpose.DETOUR.value, zone_id, str(error))))
            run.release_redzone_latch()
            self._resume_if_clear()
            return

        handle: CallHandle = future.result()
        self.pending_calls[handle.call_id] = PendingCall(handle, journey.id, run.generation)
        self._record(self._event(CallTriggered(handle.call_id, handle.purpose.value, handle.subject_id)))
        # stays paused until the driver (or the operator) decides

    # ------------------------------------------------------------------
    # Call outcomes
    # ------------------------------------------------------------------

    def handle_webhook(self, raw_body: Union[str, bytes], signature: Optional[str] = None,
                       secret: Optional[str] = None) -> CallResult:
        """
        Entry point for the vendor webhook.

        Raises:
            WebhookError: bad signature, bad JSON or no call id.
        """
        if not verify_webhook_signature(raw_body, signature, secret):
            raise WebhookError("Invalid webhook signature")
        call = parse_webhook(raw_body)
        self.handle_call_outcome(call.call_id, call.outcome, raw=call.raw)
        return call

    def handle_call_outcome(self, call_id: str, outcome: CallOutcome,
                            raw: Optional[Dict[str, Any]] = None) -> bool:
        """
        Apply a call outcome. Returns False when the call is unknown or stale
        (the run was reset or replaced since the call started).
        """
        pending = self.pending_calls.pop(call_id, None)
        if pending is None:
            logger.warning(f"Outcome {outcome.value} for unknown call {call_id} ignored")
            return False
        if self.run is None or pending.generation != self.run.generation:
            logger.debug(f"Stale outcome for call {call_id} (generation {pending.generation}) discarded")
            return False

        handle = pending.handle
        self._record(self._event(
            CallOutcomeReceived(call_id, handle.purpose.value, outcome.value),
            extra=raw,
        ))

        if handle.purpose == CallPurpose.LOAD_ASSIGNMENT:
            self._apply_load_outcome(handle.subject_id, outcome)
        else:
            self._apply_detour_outcome(handle.subject_id, outcome)
        return True

    def _apply_load_outcome(self, load_id: str, outcome: CallOutcome) -> None:
        run = self._require_run()
        if outcome == CallOutcome.ACCEPTED:
            load = self.load_board.assign(load_id)
            self.journey = replace(self.journey, assigned_load_id=load.id)
            run.journey = self.journey
            self._record(self._event(LoadAssigned(load.id, load.pickup_city, load.drop_city)))
            self._submit(
                f"next-load routes {load.id}",
                self._on_next_load_routes,
                self._fetch_next_load_routes,
                load,
                context={"load": load},
                blocking=False,
            )
            return

        # declined / unreachable: remember it, clear the latch so the next load is offered
        self.load_board.release(load_id, journey_id=self.journey.id)
        run.state.geofence_entered = False
        self._resume_if_clear()

    def _apply_detour_outcome(self, zone_id: str, outcome: CallOutcome) -> None:
        if outcome == CallOutcome.ACCEPTED:
            self.choose_detour(zone_id)
        else:
            self.continue_through(zone_id)

    # ------------------------------------------------------------------
    # Manual redzone decisions
    # ------------------------------------------------------------------

    def choose_detour(self, zone_id: Optional[str] = None) -> None:
        """
        Build a detour around the latched zone (or zone_id). The run stays
        paused until the detour job finishes.
        """
        run = self._require_run()
        zone = self._zone_for_decision(zone_id)
        if zone is None:
            return
        self._drop_pending_detour_calls(zone.id)
        run.pause()

        state = run.state
        start_index = nearest_point_index(run.route, state.position, run.route.index_at_progress(state.progress))
        self._submit(
            f"detour build {zone.id}",
            self._on_detour_built,
            functools.partial(self.detour_builder.build, start_index=start_index),
            run.route,
            state.position,
            run.destination,
            [zone],
            context={"zone_id": zone.id},
        )

    def continue_through(self, zone_id: Optional[str] = None) -> None:
        """Keep the current route through the zone. The journey is marked AT_RISK."""
        run = self._require_run()
        zone = self._zone_for_decision(zone_id)
        if zone is None:
            return
        self._drop_pending_detour_calls(zone.id)
        run.resolve_redzone([zone.id], at_risk=True)
        self._record(self._event(ContinuedThroughRedzone(zone.id)))
        self._resume_if_clear()

    def _on_detour_built(self, future: Future, zone_id: str) -> None:
        run = self._require_run()
        error = future.exception()
        if error is not None:
            if not isinstance(error, RoutingUnavailableError):
                raise error
            logger.warning(f"Detour around zone {zone_id} unavailable: {error}")
            self._record(self._event(DetourUnavailable((zone_id,), str(error))))
            run.resolve_redzone([zone_id], at_risk=True)
            self._resume_if_clear()
            return

        detour: DetourResult = future.result()
        self.last_detour = detour
        run.substitute_route(detour.route, is_detour=True)
        run.resolve_redzone([zone_id])

        extra = {}
        if not detour.is_validated:
            extra["warning"] = (f"detour min clearance {detour.min_clearance_km:.2f} km "
                                f"is below the required clearance")
        self._record(self._event(
            DetourSelected(
                zone_ids=(zone_id,),
                distance_km=detour.distance_km,
                validation_status=detour.status.value,
                passes=detour.passes,
                min_clearance_km=detour.min_clearance_km,
            ),
            extra=extra,
        ))
        self._resume_if_clear()

    # ------------------------------------------------------------------
    # Next load
    # ------------------------------------------------------------------

    def _fetch_next_load_routes(self, load: Load) -> NextLoadRoutes:
        to_pickup = self.route_provider.get_route(self.journey.destination, load.pickup)
        to_drop = self.route_provider.get_route(load.pickup, load.drop)
        return NextLoadRoutes(load, Route.from_result(to_pickup), Route.from_result(to_drop))

    def _on_next_load_routes(self, future: Future, load: Load) -> None:
        error = future.exception()
        if error is not None:
            if not isinstance(error, RoutingUnavailableError):
                raise error
            logger.warning(f"Routes for load {load.id} unavailable: {error}")
            return
        self.next_load_routes = future.result()
        logger.info(f"Next load {load.id} routes ready: {self.next_load_routes.combined.total_km:.1f} km")
        # unloading already finished while the routes were in flight
        if self.auto_continue_next_load and self._require_run().state.is_finished:
            self.continue_with_next_load()

    def continue_with_next_load(self) -> Optional[SimulationRun]:
        """
        Start a new run from the finished destination over the accepted load's
        pickup and drop. Returns None when no next-load route is ready.
        """
        if self.next_load_routes is None or self.journey is None:
            return None

        load = self.next_load_routes.load
        route = self.next_load_routes.combined
        previous = self.journey
        self.journey = replace(
            previous,
            origin_city=previous.destination_city,
            origin=previous.destination,
            destination_city=load.drop_city,
            destination=load.drop,
            assigned_load_id=None,
        )
        self.next_load_routes = None
        self.pending_calls.clear()
        self.run = SimulationRun(
            self.journey,
            route,
            zones=self.zones,
            config=self.config,
            rng=self._rng,
            generation=self._next_generation(),
        )
        logger.info(f"Journey {self.journey.id} continuing with load {load.id}: {load.summary()}")
        self.start()
        return self.run

    # ------------------------------------------------------------------
    # Async plumbing
    # ------------------------------------------------------------------

    def _submit(self, label: str, on_done: Callable, fn: Callable, *args,
                context: Optional[Dict[str, Any]] = None, blocking: bool = True) -> None:
        if self.executor is None:
            future = _run_inline(fn, *args)
        else:
            future = self.executor.submit(fn, *args)
        self._jobs.append(_Job(future, self._require_run().generation, on_done, label, dict(context or {}), blocking))
        self.process_completed()

    def process_completed(self) -> int:
        """Apply every finished job in submission order. Returns how many were applied."""
        applied = 0
        while True:
            ready = [job for job in self._jobs if job.future.done()]
            if not ready:
                return applied
            for job in ready:
                self._jobs.remove(job)
                if self.run is None or job.generation != self.run.generation:
                    logger.debug(f"Stale result for {job.label} (generation {job.generation}) discarded")
                    continue
                job.on_done(job.future, **job.context)
                applied += 1

    def wait_for_pending(self, timeout: Optional[float] = None) -> int:
        """Block until outstanding jobs finish (or timeout), then apply them."""
        futures = [job.future for job in self._jobs]
        if futures:
            wait(futures, timeout=timeout)
        return self.process_completed()

    @property
    def has_pending_jobs(self) -> bool:
        return bool(self._jobs)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fetch_zones(self) -> List[Zone]:
        source = self._zone_source
        zones = source() if callable(source) else source
        return list(zones)

    def _next_generation(self) -> int:
        self._last_generation += 1
        return self._last_generation

    def _require_run(self) -> SimulationRun:
        if self.run is None:
            raise RuntimeError("No journey loaded. Call load_journey() first.")
        return self.run

    def _resume_if_clear(self) -> None:
        """Resume unless a redzone decision or a blocking job is still outstanding."""
        run = self._require_run()
        if self._awaiting_decision():
            return
        if any(job.blocking and job.generation == run.generation for job in self._jobs):
            return
        run.resume()

    def _awaiting_decision(self) -> bool:
        run = self._require_run()
        return run.state.redzone_triggered_zone_id is not None

    def _zone_for_decision(self, zone_id: Optional[str]) -> Optional[Zone]:
        run = self._require_run()
        zone_id = zone_id or run.state.redzone_triggered_zone_id
        if zone_id is None:
            logger.info("No redzone alert to resolve")
            return None
        for zone in self.zones:
            if zone.id == zone_id:
                return zone
        logger.warning(f"Unknown zone {zone_id}")
        return None

    def _drop_pending_detour_calls(self, zone_id: str) -> None:
        for call_id, pending in list(self.pending_calls.items()):
            if pending.handle.purpose == CallPurpose.DETOUR and pending.handle.subject_id == zone_id:
                del self.pending_calls[call_id]

    def _event(self, payload, extra: Optional[Dict[str, Any]] = None) -> SimulationEvent:
        run = self._require_run()
        return SimulationEvent.of(payload, journey_id=run.journey.id, generation=run.generation, extra=extra)

    def _record(self, event: SimulationEvent) -> None:
        self.event_log.record(event)

    def _record_all(self, events: Sequence[SimulationEvent]) -> None:
        self.event_log.extend(events)

    def snapshot(self) -> Dict[str, Any]:
        """Plain dict of the current run state, for printing/dashboards."""
        run = self._require_run()
        state = run.state
        return {
            "journey_id": run.journey.id,
            "generation": run.generation,
            "status": state.status.value,
            "progress": round(state.progress, 4),
            "position": state.position.to_dict(),
            "heading": round(state.heading, 1),
            "remaining_km": round(state.remaining_distance_km, 2),
            "eta_minutes": round(state.eta_minutes, 1),
            "is_running": state.is_running,
            "is_on_detour": state.is_on_detour,
            "geofence_entered": state.geofence_entered,
            "redzone_zone_id": state.redzone_triggered_zone_id,
            "assigned_load_id": self.journey.assigned_load_id if self.journey else None,
        }

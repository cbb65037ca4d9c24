import random

import pytest

from journeys.models import JourneyStatus
from routing.eta_service import InvalidSpeedError
from routing.models import GeoPoint
from routing.route_service import EmptyRouteError, Route
from simulation.engine import tick
from simulation.events import EventKind
from simulation.models import Stoppage
from simulation.policy import SimulationConfig
from simulation.runner import SimulationRun


def kinds(events):
    return [event.kind for event in events]


@pytest.fixture
def run(journey, east_route, quiet_config):
    return SimulationRun(journey, east_route, config=quiet_config, rng=random.Random(1))


def drive(run, ticks, delta_seconds=0.5):
    events = []
    for _ in range(ticks):
        events.extend(run.step(delta_seconds).events)
    return events


def test_initial_state(run, east_route):
    state = run.state

    assert state.progress == 0.0
    assert state.position == east_route[0]
    assert state.status == JourneyStatus.NOT_STARTED
    assert state.is_running is False
    assert state.remaining_distance_km == pytest.approx(east_route.total_km)
    # 120 km/h x 50
    assert state.eta_minutes == pytest.approx(east_route.total_km / 6000.0 * 60.0)
    assert state.heading == pytest.approx(90.0, abs=0.5)


def test_bad_config_and_empty_route_fail_at_construction(journey, east_route):
    with pytest.raises(InvalidSpeedError):
        SimulationRun(journey, east_route, config=SimulationConfig(base_speed_kmh=0))
    with pytest.raises(InvalidSpeedError):
        SimulationRun(journey, east_route, config=SimulationConfig(speed_multiplier=-1))
    with pytest.raises(EmptyRouteError):
        SimulationRun(journey, Route([]), config=SimulationConfig(stoppage_count=0))


def test_nothing_moves_before_start(run):
    run.step(0.5)
    assert run.state.progress == 0.0


def test_start_emits_once(run):
    events = run.start()
    assert kinds(events) == [EventKind.JOURNEY_STARTED]
    assert run.state.status == JourneyStatus.IN_TRANSIT
    assert run.is_running

    run.pause()
    assert run.start() == []


def test_pause_and_resume(run):
    run.start()
    run.step(0.5)
    progress = run.state.progress

    run.pause()
    run.step(0.5)
    assert run.state.progress == progress

    run.resume()
    run.step(0.5)
    assert run.state.progress > progress


def test_resume_before_start_is_ignored(run):
    run.resume()
    assert run.is_running is False


def test_tick_does_not_mutate_input(run, east_route):
    run.start()
    before = run.state
    result = tick(before, run.config, east_route, run.destination, [], 0.5)

    assert before.progress == 0.0
    assert result.state is not before
    assert result.state.progress > 0.0


def test_full_journey(run, east_route):
    """
    Start to COMPLETED with no zones and no stoppages:
    geofence fires once, arrival moves to UNLOADING, unloading takes 5 s.
    """
    events = run.start()

    # 1. drive to the destination
    for _ in range(1000):
        result = run.step(0.5)
        events.extend(result.events)
        if result.arrived:
            break
    assert run.state.status == JourneyStatus.UNLOADING
    assert run.state.progress == 1.0
    assert run.state.position == east_route[-1]
    assert run.state.remaining_distance_km == 0.0
    assert run.state.eta_minutes == 0.0
    assert kinds(events).count(EventKind.GEOFENCE_ENTERED) == 1
    assert run.state.geofence_entered

    # 2. unloading: 5 s in 0.5 s ticks
    completed_after = None
    for i in range(1, 20):
        result = run.step(0.5)
        events.extend(result.events)
        if result.completed:
            completed_after = i
            break
    assert completed_after == 10
    assert run.state.status == JourneyStatus.COMPLETED
    assert run.state.is_running is False
    assert run.state.is_finished

    # 3. finished runs ignore further ticks and resume
    run.resume()
    assert run.step(0.5).events == []
    assert kinds(events)[-2:] == [EventKind.ARRIVED, EventKind.UNLOADING_COMPLETED]
    assert events[-1].payload.assigned_load_id is None


def test_stoppage_halts_then_resumes(run, tick_until):
    run.state.stoppages = [Stoppage(position=0.3, duration_seconds=12.0)]
    run.start()

    result = tick_until(run, lambda r: r.stoppage is not None)
    assert run.state.status == JourneyStatus.STOPPAGE
    assert 0.29 <= run.state.progress <= 0.31
    assert kinds(result.events) == [EventKind.STOPPAGE_STARTED]
    halted_at = run.state.progress

    # 12 s of stoppage; one 0.5 s tick is 25 simulated seconds
    result = run.step(0.5)
    assert run.state.progress == halted_at
    assert kinds(result.events) == [EventKind.STOPPAGE_ENDED]
    assert run.state.status == JourneyStatus.IN_TRANSIT
    assert run.state.active_stoppage is None

    # moving again, and the same stoppage never fires twice
    events = drive(run, 50)
    assert run.state.progress > halted_at
    assert EventKind.STOPPAGE_STARTED not in kinds(events)


def test_long_stoppage_counts_down_over_ticks(run, tick_until):
    run.state.stoppages = [Stoppage(position=0.2, duration_seconds=60.0)]
    run.start()
    tick_until(run, lambda r: r.stoppage is not None)

    # 25 s per tick: 60 s needs three ticks
    assert run.step(0.5).events == []
    assert run.step(0.5).events == []
    assert kinds(run.step(0.5).events) == [EventKind.STOPPAGE_ENDED]


def test_redzone_latch_and_resolution(journey, east_route, quiet_config, zone_on_route, tick_until):
    run = SimulationRun(journey, east_route, zones=[zone_on_route], config=quiet_config)
    run.start()

    # 1. fires once, and stays latched while ticking on
    result = tick_until(run, lambda r: r.redzone is not None)
    assert result.redzone.zone.id == "Z1"
    assert result.redzone.distance_km <= 10.0
    assert run.state.redzone_triggered_zone_id == "Z1"
    assert EventKind.REDZONE_APPROACHED in kinds(result.events)
    assert EventKind.REDZONE_APPROACHED not in kinds(drive(run, 5))

    # 2. continuing through marks the journey at risk and never alerts again
    run.resolve_redzone(["Z1"], at_risk=True)
    assert run.state.status == JourneyStatus.AT_RISK
    assert run.state.redzone_triggered_zone_id is None
    assert "Z1" in run.state.resolved_zone_ids
    assert EventKind.REDZONE_APPROACHED not in kinds(drive(run, 100))


def test_released_latch_can_fire_again(journey, east_route, quiet_config, zone_on_route, tick_until):
    run = SimulationRun(journey, east_route, zones=[zone_on_route], config=quiet_config)
    run.start()
    tick_until(run, lambda r: r.redzone is not None)

    run.release_redzone_latch()
    result = run.step(0.5)
    assert result.redzone is not None
    assert result.redzone.zone.id == "Z1"


def test_reset_moves_generation_on(journey, east_route):
    config = SimulationConfig(stoppage_count=2)
    run = SimulationRun(journey, east_route, config=config, rng=random.Random(5), generation=3)
    run.start()
    drive(run, 20)
    run.substitute_route(Route([GeoPoint(20.0, 75.2), GeoPoint(20.0, 78.0)]))

    event = run.reset()

    assert event.kind == EventKind.SIMULATION_RESET
    assert run.generation == 4
    assert event.generation == 4
    state = run.state
    assert state.progress == 0.0
    assert state.status == JourneyStatus.NOT_STARTED
    assert state.is_running is False
    assert state.geofence_entered is False
    assert state.redzone_triggered_zone_id is None
    assert state.is_on_detour is False
    assert run.route is run.original_route
    assert len(state.stoppages) == 2
    assert not any(stoppage.triggered for stoppage in state.stoppages)

    # starting again announces the journey again
    assert kinds(run.start()) == [EventKind.JOURNEY_STARTED]


def test_jump_never_moves_backwards(run):
    run.start()
    run.jump()
    assert run.state.progress == pytest.approx(0.85)

    run.jump(0.5)
    assert run.state.progress == pytest.approx(0.85)


def test_jump_triggers_evaluated_on_next_tick(run):
    run.start()
    run.jump(0.99)
    assert run.state.geofence_entered is False

    result = run.step(0.5)
    assert result.geofence_entered
    assert run.state.status == JourneyStatus.NEAR_DESTINATION


def test_substitute_route_restarts_progress(run):
    run.start()
    drive(run, 10)
    detour = Route([GeoPoint(20.0, 75.1), GeoPoint(20.3, 76.5), GeoPoint(20.0, 78.0)])

    run.substitute_route(detour)

    assert run.route is detour
    assert run.state.progress == 0.0
    assert run.state.position == detour[0]
    assert run.state.total_distance_km == pytest.approx(detour.total_km)
    assert run.state.remaining_distance_km == pytest.approx(detour.total_km)
    assert run.state.is_on_detour
    assert run.is_running

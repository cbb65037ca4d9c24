import json

import pytest

from conftest import DeferredExecutor, FailingRouter, RecordingVoiceClient, StraightLineRouter
from dispatch.call_outcomes import WebhookError, sign_payload
from dispatch.dispatcher import Dispatcher
from dispatch.voice_client import CallOutcome
from journeys.models import JourneyStatus
from loads.board import LoadBoard
from loads.models import Load, LoadStatus
from routing.geofence import zone_clearance_km
from routing.models import GeoPoint
from routing.osrm_client import RoutingUnavailableError
from simulation.events import EventKind, EventLevel


def kinds(dispatcher):
    return [event.kind for event in dispatcher.event_log]


@pytest.fixture
def board():
    board = LoadBoard()
    board.extend([
        Load("NEAR", "Near Town", GeoPoint(20.02, 78.02), "Drop City", GeoPoint(20.5, 78.0), commodity="FMCG"),
        Load("MID", "Mid Town", GeoPoint(20.3, 78.3), "Other City", GeoPoint(19.5, 78.0), commodity="Steel"),
    ])
    return board


@pytest.fixture
def redzone_dispatcher(router, voice, zone_on_route, quiet_config, journey):
    dispatcher = Dispatcher(router, voice_client=voice, zones=[zone_on_route], config=quiet_config)
    dispatcher.load_journey(journey)
    dispatcher.start()
    return dispatcher


@pytest.fixture
def load_dispatcher(router, voice, board, quiet_config, journey):
    dispatcher = Dispatcher(router, voice_client=voice, load_board=board, config=quiet_config)
    dispatcher.load_journey(journey)
    dispatcher.start()
    dispatcher.jump_near_destination()
    return dispatcher


def reach_redzone(dispatcher, tick_until):
    return tick_until(dispatcher, lambda r: r.redzone is not None)


def test_load_journey_fetches_route_and_zones_once(voice, zone_on_route, quiet_config, journey):
    router = StraightLineRouter()
    fetches = []

    def zones():
        fetches.append(1)
        return [zone_on_route]

    dispatcher = Dispatcher(router, voice_client=voice, zones=zones, config=quiet_config)
    run = dispatcher.load_journey(journey)

    assert fetches == [1]
    assert dispatcher.zones == [zone_on_route]
    assert run.generation == 1
    assert run.route[0] == journey.origin
    assert run.route[-1].is_close(journey.destination)
    assert router.requests == [(journey.origin, (), journey.destination)]


def test_initial_routing_failure_propagates(voice, quiet_config, journey):
    dispatcher = Dispatcher(FailingRouter(), voice_client=voice, config=quiet_config)
    with pytest.raises(RoutingUnavailableError):
        dispatcher.load_journey(journey)


def test_tick_without_journey(router):
    assert Dispatcher(router).tick(0.5) is None


def test_redzone_pauses_and_calls_driver(redzone_dispatcher, voice, tick_until):
    reach_redzone(redzone_dispatcher, tick_until)
    run = redzone_dispatcher.run

    assert voice.detour_calls == ["Z1"]
    assert run.is_running is False
    assert run.state.redzone_triggered_zone_id == "Z1"
    assert "call-1" in redzone_dispatcher.pending_calls
    assert EventKind.REDZONE_APPROACHED in kinds(redzone_dispatcher)
    assert EventKind.CALL_TRIGGERED in kinds(redzone_dispatcher)

    # paused ticks do not move the truck, and resume waits for a decision
    progress = run.state.progress
    redzone_dispatcher.tick(0.5)
    redzone_dispatcher.resume()
    redzone_dispatcher.tick(0.5)
    assert run.state.progress == progress


def test_accepted_detour_switches_route(redzone_dispatcher, zone_on_route, tick_until):
    reach_redzone(redzone_dispatcher, tick_until)
    original = redzone_dispatcher.run.route

    assert redzone_dispatcher.handle_call_outcome("call-1", CallOutcome.ACCEPTED) is True

    run = redzone_dispatcher.run
    detour = redzone_dispatcher.last_detour
    assert detour is not None and detour.is_validated
    assert run.route is detour.route
    assert run.route is not original
    assert run.state.is_on_detour
    assert run.state.progress == 0.0
    assert run.state.status == JourneyStatus.IN_TRANSIT
    assert run.state.redzone_triggered_zone_id is None
    assert run.is_running

    selected = redzone_dispatcher.event_log.last(EventKind.DETOUR_SELECTED)
    assert selected.payload.validation_status == "VALIDATED"
    assert selected.payload.zone_ids == ("Z1",)

    # the truck now keeps clear of the zone all the way in, with no second alert
    result = None
    for _ in range(2000):
        result = redzone_dispatcher.tick(0.5)
        assert zone_clearance_km(run.state.position, zone_on_route) > 3.0
        if result.arrived:
            break
    assert result.arrived
    assert len(redzone_dispatcher.event_log.of_kind(EventKind.REDZONE_APPROACHED)) == 1


def test_rejected_detour_continues_at_risk(redzone_dispatcher, tick_until):
    reach_redzone(redzone_dispatcher, tick_until)
    original = redzone_dispatcher.run.route

    redzone_dispatcher.handle_call_outcome("call-1", CallOutcome.REJECTED)

    run = redzone_dispatcher.run
    assert run.route is original
    assert run.state.status == JourneyStatus.AT_RISK
    assert run.is_running
    continued = redzone_dispatcher.event_log.last(EventKind.CONTINUED_THROUGH_REDZONE)
    assert continued.level == EventLevel.WARNING


@pytest.mark.parametrize("outcome", [CallOutcome.NO_ANSWER, CallOutcome.BUSY, CallOutcome.FAILED])
def test_unanswered_detour_call_continues(redzone_dispatcher, tick_until, outcome):
    reach_redzone(redzone_dispatcher, tick_until)
    redzone_dispatcher.handle_call_outcome("call-1", outcome)

    assert redzone_dispatcher.run.is_running
    assert redzone_dispatcher.run.state.status == JourneyStatus.AT_RISK


def test_failed_detour_call_releases_latch(router, zone_on_route, quiet_config, journey, tick_until):
    dispatcher = Dispatcher(router, voice_client=RecordingVoiceClient(fail=True),
                            zones=[zone_on_route], config=quiet_config)
    dispatcher.load_journey(journey)
    dispatcher.start()

    reach_redzone(dispatcher, tick_until)

    failed = dispatcher.event_log.last(EventKind.CALL_FAILED)
    assert failed.level == EventLevel.ERROR
    assert failed.payload.subject_id == "Z1"
    assert dispatcher.run.state.redzone_triggered_zone_id is None
    assert dispatcher.run.is_running

    # released, not resolved: the alert is retried on the next tick
    assert dispatcher.tick(0.5).redzone is not None


def test_detour_routing_failure_keeps_original_route(voice, zone_on_route, quiet_config, journey, tick_until):
    dispatcher = Dispatcher(StraightLineRouter(fail_via=True), voice_client=voice,
                            zones=[zone_on_route], config=quiet_config)
    dispatcher.load_journey(journey)
    dispatcher.start()
    reach_redzone(dispatcher, tick_until)
    original = dispatcher.run.route

    dispatcher.handle_call_outcome("call-1", CallOutcome.ACCEPTED)

    unavailable = dispatcher.event_log.last(EventKind.DETOUR_UNAVAILABLE)
    assert unavailable.level == EventLevel.WARNING
    assert unavailable.payload.zone_ids == ("Z1",)
    assert dispatcher.run.route is original
    assert dispatcher.run.state.status == JourneyStatus.AT_RISK
    assert dispatcher.run.is_running
    assert dispatcher.last_detour is None


def test_unvalidated_detour_is_flagged(voice, zone_on_route, quiet_config, journey, tick_until):
    dispatcher = Dispatcher(StraightLineRouter(ignore_via=True), voice_client=voice,
                            zones=[zone_on_route], config=quiet_config)
    dispatcher.load_journey(journey)
    dispatcher.start()
    reach_redzone(dispatcher, tick_until)

    dispatcher.handle_call_outcome("call-1", CallOutcome.ACCEPTED)

    selected = dispatcher.event_log.last(EventKind.DETOUR_SELECTED)
    assert selected.payload.validation_status == "VALIDATION_FAILED"
    assert selected.payload.passes == 2
    assert "warning" in selected.extra
    assert dispatcher.run.state.is_on_detour


def test_manual_decision_without_voice_client(router, zone_on_route, quiet_config, journey, tick_until):
    dispatcher = Dispatcher(router, zones=[zone_on_route], config=quiet_config)
    dispatcher.load_journey(journey)
    dispatcher.start()
    reach_redzone(dispatcher, tick_until)

    assert dispatcher.run.is_running is False
    dispatcher.resume()
    assert dispatcher.run.is_running is False

    dispatcher.choose_detour()
    assert dispatcher.run.state.is_on_detour
    assert dispatcher.run.is_running


def test_operator_decision_drops_pending_call(redzone_dispatcher, tick_until):
    reach_redzone(redzone_dispatcher, tick_until)

    redzone_dispatcher.continue_through()

    assert redzone_dispatcher.pending_calls == {}
    # the driver's late answer no longer changes anything
    assert redzone_dispatcher.handle_call_outcome("call-1", CallOutcome.ACCEPTED) is False
    assert redzone_dispatcher.run.state.is_on_detour is False


def test_no_decision_without_alert(redzone_dispatcher):
    redzone_dispatcher.choose_detour()
    redzone_dispatcher.continue_through()
    assert redzone_dispatcher.last_detour is None
    assert EventKind.CONTINUED_THROUGH_REDZONE not in kinds(redzone_dispatcher)


def test_geofence_offers_nearest_load(load_dispatcher, voice, board, tick_until):
    tick_until(load_dispatcher, lambda r: r.geofence_entered)

    assert voice.load_calls == ["NEAR"]
    assert board.get("NEAR").status == LoadStatus.OFFERED
    assert load_dispatcher.run.state.status == JourneyStatus.NEAR_DESTINATION
    # the call went out, the truck keeps moving while the driver thinks
    assert load_dispatcher.run.is_running


def test_accepted_load_rolls_onto_next_leg(load_dispatcher, board, journey, tick_until):
    tick_until(load_dispatcher, lambda r: r.geofence_entered)

    load_dispatcher.handle_call_outcome("call-1", CallOutcome.ACCEPTED)

    assert board.get("NEAR").status == LoadStatus.ASSIGNED
    assert load_dispatcher.journey.assigned_load_id == "NEAR"
    assert load_dispatcher.next_load_routes is not None
    assert load_dispatcher.event_log.last(EventKind.LOAD_ASSIGNED).payload.load_id == "NEAR"

    first_run = load_dispatcher.run
    tick_until(load_dispatcher, lambda r: r.completed)
    assert load_dispatcher.event_log.last(EventKind.UNLOADING_COMPLETED).payload.assigned_load_id == "NEAR"

    run = load_dispatcher.run
    assert run is not first_run
    assert run.generation == first_run.generation + 1
    assert run.journey.origin == journey.destination
    assert run.journey.destination == GeoPoint(20.5, 78.0)
    assert run.journey.destination_city == "Drop City"
    assert run.state.status == JourneyStatus.IN_TRANSIT
    assert run.is_running
    assert run.route[-1].is_close(GeoPoint(20.5, 78.0))
    assert len(load_dispatcher.event_log.of_kind(EventKind.JOURNEY_STARTED)) == 2


def test_declined_load_offers_next_one(load_dispatcher, voice, board, tick_until):
    tick_until(load_dispatcher, lambda r: r.geofence_entered)

    load_dispatcher.handle_call_outcome("call-1", CallOutcome.REJECTED)
    assert board.get("NEAR").status == LoadStatus.AVAILABLE
    assert load_dispatcher.run.state.geofence_entered is False

    load_dispatcher.tick(0.5)
    assert voice.load_calls == ["NEAR", "MID"]
    assert board.get("MID").status == LoadStatus.OFFERED

    # nothing left to offer after the second refusal
    load_dispatcher.handle_call_outcome("call-2", CallOutcome.NO_ANSWER)
    load_dispatcher.tick(0.5)
    assert voice.load_calls == ["NEAR", "MID"]


def test_failed_load_call_releases_load(router, board, quiet_config, journey, tick_until):
    dispatcher = Dispatcher(router, voice_client=RecordingVoiceClient(fail=True), load_board=board,
                            config=quiet_config)
    dispatcher.load_journey(journey)
    dispatcher.start()
    dispatcher.jump_near_destination()

    tick_until(dispatcher, lambda r: r.geofence_entered)

    assert board.get("NEAR").status == LoadStatus.AVAILABLE
    assert dispatcher.event_log.last(EventKind.CALL_FAILED).payload.subject_id == "NEAR"
    assert dispatcher.run.state.geofence_entered is False
    assert dispatcher.run.is_running


def test_completed_without_load_stays_completed(load_dispatcher, tick_until):
    tick_until(load_dispatcher, lambda r: r.geofence_entered)
    load_dispatcher.handle_call_outcome("call-1", CallOutcome.REJECTED)
    load_dispatcher.tick(0.5)
    load_dispatcher.handle_call_outcome("call-2", CallOutcome.REJECTED)
    run = load_dispatcher.run

    tick_until(load_dispatcher, lambda r: r.completed)
    assert load_dispatcher.run is run
    assert run.state.status == JourneyStatus.COMPLETED


def test_reset_discards_in_flight_results(router, voice, zone_on_route, quiet_config, journey, tick_until):
    executor = DeferredExecutor()
    dispatcher = Dispatcher(router, voice_client=voice, zones=[zone_on_route], config=quiet_config,
                            executor=executor)
    dispatcher.load_journey(journey)
    dispatcher.start()
    reach_redzone(dispatcher, tick_until)
    assert dispatcher.has_pending_jobs

    dispatcher.reset()
    assert dispatcher.run.generation == 2
    executor.run_all()

    assert dispatcher.process_completed() == 0
    assert dispatcher.pending_calls == {}
    assert EventKind.CALL_TRIGGERED not in kinds(dispatcher)
    assert dispatcher.event_log.last().kind == EventKind.SIMULATION_RESET
    assert dispatcher.run.state.status == JourneyStatus.NOT_STARTED


def test_stale_call_outcome_is_ignored(redzone_dispatcher, tick_until):
    reach_redzone(redzone_dispatcher, tick_until)
    redzone_dispatcher.reset()

    assert redzone_dispatcher.handle_call_outcome("call-1", CallOutcome.ACCEPTED) is False
    assert redzone_dispatcher.last_detour is None
    assert redzone_dispatcher.handle_call_outcome("never-made", CallOutcome.ACCEPTED) is False


def test_reset_releases_offered_load(load_dispatcher, board, tick_until):
    tick_until(load_dispatcher, lambda r: r.geofence_entered)
    assert board.get("NEAR").status == LoadStatus.OFFERED

    load_dispatcher.reset()
    assert board.get("NEAR").status == LoadStatus.AVAILABLE


def test_reset_drops_accepted_load(load_dispatcher, board, journey, tick_until):
    tick_until(load_dispatcher, lambda r: r.geofence_entered)
    load_dispatcher.handle_call_outcome("call-1", CallOutcome.ACCEPTED)
    assert load_dispatcher.next_load_routes is not None

    load_dispatcher.reset()
    assert load_dispatcher.next_load_routes is None
    assert load_dispatcher.journey.assigned_load_id is None
    assert load_dispatcher.run.journey.assigned_load_id is None
    assert board.get("NEAR").status == LoadStatus.AVAILABLE

    # the restarted run finishes where it is and stays on the original journey
    load_dispatcher.start()
    load_dispatcher.jump_near_destination()
    run = load_dispatcher.run
    tick_until(load_dispatcher, lambda r: r.completed)

    assert load_dispatcher.run is run
    assert run.state.status == JourneyStatus.COMPLETED
    assert load_dispatcher.journey.origin == journey.origin
    assert load_dispatcher.journey.destination_city == "Destination City"


def test_next_load_routes_arriving_after_unloading(router, voice, board, quiet_config, journey, tick_until):
    executor = DeferredExecutor()
    dispatcher = Dispatcher(router, voice_client=voice, load_board=board, config=quiet_config,
                            executor=executor)
    dispatcher.load_journey(journey)
    dispatcher.start()
    dispatcher.jump_near_destination()

    # 1. load call goes out and connects
    tick_until(dispatcher, lambda r: r.geofence_entered)
    executor.run_all()
    assert dispatcher.wait_for_pending() == 1
    assert "call-1" in dispatcher.pending_calls

    # 2. accepted, but the route fetch is still in flight when unloading ends
    dispatcher.handle_call_outcome("call-1", CallOutcome.ACCEPTED)
    first_run = dispatcher.run
    tick_until(dispatcher, lambda r: r.completed)
    assert dispatcher.run is first_run
    assert dispatcher.has_pending_jobs

    # 3. the routes arrive and the next leg starts right away
    executor.run_all()
    assert dispatcher.wait_for_pending() == 1
    assert not dispatcher.has_pending_jobs
    assert dispatcher.next_load_routes is None

    run = dispatcher.run
    assert run is not first_run
    assert run.journey.origin == journey.destination
    assert run.journey.destination_city == "Drop City"
    assert run.state.status == JourneyStatus.IN_TRANSIT
    assert run.is_running


def test_pending_detour_build_keeps_run_paused(router, voice, zone_on_route, quiet_config, journey, tick_until):
    executor = DeferredExecutor()
    dispatcher = Dispatcher(router, voice_client=voice, zones=[zone_on_route], config=quiet_config,
                            executor=executor)
    dispatcher.load_journey(journey)
    dispatcher.start()
    reach_redzone(dispatcher, tick_until)

    # 1. call request completes
    executor.run_all()
    dispatcher.process_completed()
    assert "call-1" in dispatcher.pending_calls

    # 2. driver accepts; detour build is in flight
    dispatcher.handle_call_outcome("call-1", CallOutcome.ACCEPTED)
    dispatcher.resume()
    progress = dispatcher.run.state.progress
    dispatcher.tick(0.5)
    assert dispatcher.run.is_running is False
    assert dispatcher.run.state.progress == progress

    # 3. detour arrives on the next tick
    executor.run_all()
    dispatcher.tick(0.5)
    assert dispatcher.run.state.is_on_detour
    assert dispatcher.run.is_running


def test_webhook_signature_is_checked(redzone_dispatcher, tick_until):
    reach_redzone(redzone_dispatcher, tick_until)
    body = json.dumps({"callId": "call-1", "status": "completed", "outcome": "rejected"})

    with pytest.raises(WebhookError):
        redzone_dispatcher.handle_webhook(body, signature="deadbeef", secret="s3cret")
    assert "call-1" in redzone_dispatcher.pending_calls

    call = redzone_dispatcher.handle_webhook(body, signature=sign_payload(body, "s3cret"), secret="s3cret")
    assert call.outcome == CallOutcome.REJECTED
    outcome_event = redzone_dispatcher.event_log.last(EventKind.CALL_OUTCOME)
    assert outcome_event.payload.outcome == "REJECTED"
    assert outcome_event.extra["status"] == "completed"
    assert redzone_dispatcher.run.state.status == JourneyStatus.AT_RISK


def test_snapshot(redzone_dispatcher):
    redzone_dispatcher.tick(0.5)
    snap = redzone_dispatcher.snapshot()

    assert snap["journey_id"] == "J1"
    assert snap["status"] == "IN_TRANSIT"
    assert snap["is_running"] is True
    assert 0 < snap["progress"] < 0.01

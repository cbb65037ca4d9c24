import csv
import json
import logging
import os
import random
import uuid
from typing import List

from dispatch.dispatcher import Dispatcher
from dispatch.event_log import EventLog
from dispatch.voice_client import CallHandle, CallPurpose
from journeys.models import Journey
from loads.board import LoadBoard, load_board_from_csv
from loads.models import Load
from routing.models import GeoPoint, Zone, ZoneCategory
from routing.osrm_client import OSRMClient
from routing.route_cache import CachingRouteProvider
from routing.route_service import Route, interpolate
from simulation.policy import SimulationConfig
from simulation.scheduler import TickScheduler


class MockVoiceClient:
    """
    Stands in for RinggClient. Calls always "connect"; the script answers them
    through the webhook path afterwards.
    """
    def __init__(self):
        self.calls: List[CallHandle] = []

    def initiate_load_call(self, journey_id, load_id, driver_name, driver_phone, vehicle_number,
                           current_location=None, eta_minutes=None):
        handle = CallHandle(f"call-{uuid.uuid4().hex[:8]}", CallPurpose.LOAD_ASSIGNMENT, load_id)
        self.calls.append(handle)
        return handle

    def initiate_detour_call(self, zone_id, driver_name, driver_phone, zone_name=None, current_position=None):
        handle = CallHandle(f"call-{uuid.uuid4().hex[:8]}", CallPurpose.DETOUR, zone_id)
        self.calls.append(handle)
        return handle


def load_loads(filepath="sampledata/loads.csv") -> LoadBoard:
    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    absolute_path = os.path.join(base_dir, filepath)
    if os.path.exists(absolute_path):
        return load_board_from_csv(absolute_path)

    # No generated data yet: two loads near Delhi
    board = LoadBoard()
    board.add(Load("L0001", "Delhi", GeoPoint(28.65, 77.20), "Jaipur", GeoPoint(26.9124, 75.7873), commodity="FMCG"))
    board.add(Load("L0002", "Gurugram", GeoPoint(28.4595, 77.0266), "Agra", GeoPoint(27.1767, 78.0081), commodity="Steel"))
    return board


def zone_on_route(route: Route, progress: float, half_size_deg: float = 0.02) -> Zone:
    """A small square HIGH_RISK zone sitting on the route, so the demo has something to avoid."""
    center = interpolate(route, progress)
    return Zone.new(
        "Z-DEMO",
        "Demo highway theft hotspot",
        ZoneCategory.HIGH_RISK,
        [
            (center.lat - half_size_deg, center.lng - half_size_deg),
            (center.lat - half_size_deg, center.lng + half_size_deg),
            (center.lat + half_size_deg, center.lng + half_size_deg),
            (center.lat + half_size_deg, center.lng - half_size_deg),
        ],
    )


def answer_calls(dispatcher: Dispatcher, voice: MockVoiceClient, answered: set, load_answers: List[str]):
    """Answer every open call through the webhook, the way the vendor would."""
    for handle in voice.calls:
        if handle.call_id in answered:
            continue
        answered.add(handle.call_id)
        if handle.purpose == CallPurpose.LOAD_ASSIGNMENT:
            outcome = load_answers.pop(0) if load_answers else "accepted"
        else:
            outcome = "accepted"
        body = json.dumps({"callId": handle.call_id, "status": "completed", "outcome": outcome})
        dispatcher.handle_webhook(body)
        print(f"  [WEBHOOK] {handle.purpose.value} call {handle.call_id} -> {outcome}")


def run_simulation():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    print("=== STARTING JOURNEY DISPATCH SIMULATION ===")

    # 1. Configure System
    config = SimulationConfig(base_speed_kmh=120.0, speed_multiplier=50.0, tick_interval_seconds=0.5)
    router = CachingRouteProvider(OSRMClient())
    voice = MockVoiceClient()
    board = load_loads()

    journey = Journey.new(
        "J-1001",
        "Jaipur", (26.9124, 75.7873),
        "Delhi", (28.7041, 77.1025),
        driver_name="Ramesh Kumar",
        driver_phone="919812345678",
        vehicle_number="RJ14 GB 4521",
    )

    # 2. Zones: one redzone dropped on the planned route
    planned = Route.from_result(router.get_route(journey.origin, journey.destination))
    zones = [zone_on_route(planned, 0.45)]
    print(f"Planned route: {planned.total_km:.1f} km, {len(planned)} points. Zones: {[z.name for z in zones]}\n")

    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    event_log = EventLog(os.path.join(base_dir, "simulation_events.jsonl"))
    dispatcher = Dispatcher(
        router,
        voice_client=voice,
        load_board=board,
        zones=zones,
        config=config,
        event_log=event_log,
        rng=random.Random(7),
    )

    # 3. Run
    dispatcher.load_journey(journey)
    dispatcher.start()

    answered = set()
    load_answers = ["declined by driver", "accepted"]  # first offer declined, second accepted
    legs = []
    printed = {"decile": -1}

    def on_tick(delta_seconds):
        run = dispatcher.run
        result = dispatcher.tick(delta_seconds)
        answer_calls(dispatcher, voice, answered, load_answers)
        if result is not None and result.completed:
            legs.append(run.journey.destination_city)
        decile = int(dispatcher.run.state.progress * 10)
        if decile != printed["decile"]:
            printed["decile"] = decile
            snap = dispatcher.snapshot()
            print(f"  {snap['status']:<17} progress {snap['progress']:.2f} | "
                  f"{snap['remaining_km']:7.1f} km left | ETA {snap['eta_minutes']:6.1f} min")

    def keep_going():
        # stop once the last leg (including any next-load leg) is completed
        return not (dispatcher.run.state.is_finished and dispatcher.next_load_routes is None)

    # fixed simulated time per tick and no real waiting: the demo finishes instantly
    scheduler = TickScheduler(on_tick, config.tick_interval_seconds, sleep=lambda seconds: None,
                              use_wall_clock=False)
    ticks = scheduler.run(keep_going, max_ticks=20000)

    # 4. Report
    print("\n=== SIMULATION COMPLETE ===")
    print(f"Ticks: {ticks}, legs completed: {legs}")
    print(f"Route cache: {router.hits} hits / {router.misses} misses")
    if dispatcher.last_detour is not None:
        detour = dispatcher.last_detour
        print(f"Detour: {detour.distance_km:.1f} km, {detour.status.value}, "
              f"min clearance {detour.min_clearance_km:.2f} km, {detour.passes} pass(es)")

    output_path = os.path.join(base_dir, "simulation_events.csv")
    with open(output_path, "w", newline="") as file:
        writer = csv.writer(file)
        writer.writerow(["timestamp", "journey_id", "generation", "level", "kind", "details"])
        for event in event_log:
            record = event.to_record()
            writer.writerow([record["timestamp"], record["journey_id"], record["generation"],
                             record["level"], record["kind"], json.dumps(record["details"])])
    print(f"{len(event_log)} events written to '{output_path}'.")


if __name__ == "__main__":
    run_simulation()

import math
from concurrent.futures import Executor, Future
from typing import Callable, List, Sequence

import pytest

from dispatch.voice_client import CallHandle, CallPurpose, CallTriggerError
from journeys.models import Journey
from routing.geodesy import distance_km
from routing.models import GeoPoint, RouteResult, Zone, ZoneCategory
from routing.osrm_client import RoutingUnavailableError
from routing.route_service import Route
from simulation.policy import SimulationConfig


class StraightLineRouter:
    """
    Fake routing collaborator: straight legs origin -> via... -> destination,
    densified to roughly one point per `step_km`.

    ignore_via: route straight origin -> destination even when waypoints are given
    fail_via: raise RoutingUnavailableError for any request with waypoints
    """
    def __init__(self, step_km: float = 1.0, ignore_via: bool = False, fail_via: bool = False):
        self.step_km = step_km
        self.ignore_via = ignore_via
        self.fail_via = fail_via
        self.requests = []

    def get_route(self, origin: GeoPoint, destination: GeoPoint, via: Sequence[GeoPoint] = ()) -> RouteResult:
        self.requests.append((origin, tuple(via), destination))
        if via and self.fail_via:
            raise RoutingUnavailableError("no route through waypoint")

        stops = [origin, destination] if self.ignore_via else [origin, *via, destination]
        points: List[GeoPoint] = [origin]
        for start, end in zip(stops[:-1], stops[1:]):
            steps = max(1, math.ceil(distance_km(start, end) / self.step_km))
            for i in range(1, steps + 1):
                t = i / steps
                points.append(GeoPoint(start.lat + (end.lat - start.lat) * t,
                                       start.lng + (end.lng - start.lng) * t))

        total = sum(distance_km(a, b) for a, b in zip(points[:-1], points[1:]))
        return RouteResult(distance_km=total, points=points)


class FailingRouter:
    def __init__(self):
        self.calls = 0

    def get_route(self, origin, destination, via=()):
        self.calls += 1
        raise RoutingUnavailableError("routing service down")


class RecordingVoiceClient:
    """Fake calling collaborator. Hands out call-1, call-2, ... and remembers every call."""
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.load_calls = []
        self.detour_calls = []
        self._counter = 0

    def _next_id(self):
        self._counter += 1
        return f"call-{self._counter}"

    def initiate_load_call(self, journey_id, load_id, driver_name, driver_phone, vehicle_number,
                           current_location=None, eta_minutes=None):
        self.load_calls.append(load_id)
        if self.fail:
            raise CallTriggerError("vendor unreachable")
        return CallHandle(self._next_id(), CallPurpose.LOAD_ASSIGNMENT, load_id)

    def initiate_detour_call(self, zone_id, driver_name, driver_phone, zone_name=None, current_position=None):
        self.detour_calls.append(zone_id)
        if self.fail:
            raise CallTriggerError("vendor unreachable")
        return CallHandle(self._next_id(), CallPurpose.DETOUR, zone_id)


class DeferredExecutor(Executor):
    """Executor that only runs submitted work when the test says so."""
    def __init__(self):
        self.queue = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.queue.append((future, fn, args, kwargs))
        return future

    def run_all(self):
        queue, self.queue = self.queue, []
        for future, fn, args, kwargs in queue:
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as e:
                future.set_exception(e)


def square_zone(zone_id: str, center: GeoPoint, half_size_deg: float,
                category: ZoneCategory = ZoneCategory.HIGH_RISK) -> Zone:
    return Zone.new(
        zone_id,
        f"Zone {zone_id}",
        category,
        [
            (center.lat - half_size_deg, center.lng - half_size_deg),
            (center.lat - half_size_deg, center.lng + half_size_deg),
            (center.lat + half_size_deg, center.lng + half_size_deg),
            (center.lat + half_size_deg, center.lng - half_size_deg),
        ],
    )


@pytest.fixture
def router():
    return StraightLineRouter()


@pytest.fixture
def voice():
    return RecordingVoiceClient()


@pytest.fixture
def east_route():
    # lat 20.0 from lng 75.0 to 78.0, one point every 0.01 degrees (~1.05 km)
    return Route([GeoPoint(20.0, 75.0 + i * 0.01) for i in range(301)])


@pytest.fixture
def zone_on_route():
    return square_zone("Z1", GeoPoint(20.0, 76.5), 0.01)


@pytest.fixture
def journey():
    return Journey.new(
        "J1",
        "Origin Town", (20.0, 75.0),
        "Destination City", (20.0, 78.0),
        driver_name="Test Driver",
        driver_phone="919800000000",
        vehicle_number="MH12 AB 1234",
    )


@pytest.fixture
def quiet_config():
    """Defaults, minus random stoppages."""
    return SimulationConfig(stoppage_count=0)


@pytest.fixture
def tick_until():
    """Tick `target` (a Dispatcher or SimulationRun) until predicate(result) holds."""
    def _tick_until(target, predicate: Callable, delta_seconds: float = 0.5, max_ticks: int = 5000):
        step = target.tick if hasattr(target, "tick") else target.step
        for _ in range(max_ticks):
            result = step(delta_seconds)
            if result is not None and predicate(result):
                return result
        raise AssertionError(f"condition not reached within {max_ticks} ticks")
    return _tick_until

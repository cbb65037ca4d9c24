#Purpose: Route geometry for downstream use (the "where is the truck" module).
#Holds an ordered polyline with its cumulative distance table and maps a
#progress value in [0, 1] to a position and heading along it.
#Distances use haversine everywhere so that progress -> distance is the same
#metric as the detour total-distance recomputation.

from __future__ import annotations

from bisect import bisect_left, bisect_right
from typing import Iterable, Iterator, List, Sequence, Union

from routing.geodesy import bearing_degrees, distance_km
from routing.models import GeoPoint, RouteResult

HEADING_EPSILON = 0.001


class EmptyRouteError(ValueError):
    """Raised when a position is requested on a route with no points."""
    pass


class Route:
    """
    Ordered sequence of GeoPoints in travel order plus its cumulative
    distance table (km). cumulative_km[i] is the distance from the first
    point to point i along the polyline.

    Consecutive points are assumed contiguous (upstream routing gives us
    dense polylines); this is not checked.
    """

    def __init__(self, points: Iterable[GeoPoint]):
        self._points: List[GeoPoint] = list(points)
        self._cumulative_km: List[float] = [0.0] if self._points else []
        for previous, current in zip(self._points[:-1], self._points[1:]):
            self._cumulative_km.append(self._cumulative_km[-1] + distance_km(previous, current))

    @classmethod
    def from_result(cls, result: RouteResult) -> Route:
        return cls(result.points)

    # --- sequence protocol ---

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[GeoPoint]:
        return iter(self._points)

    def __getitem__(self, index):
        return self._points[index]

    def __repr__(self) -> str:
        return f"Route(points={len(self._points)}, total_km={self.total_km:.2f})"

    # --- derived values ---

    @property
    def points(self) -> List[GeoPoint]:
        return list(self._points)

    @property
    def cumulative_km(self) -> List[float]:
        return list(self._cumulative_km)

    @property
    def total_km(self) -> float:
        return self._cumulative_km[-1] if self._cumulative_km else 0.0

    def progress_at_index(self, index: int) -> float:
        """Fraction of the route travelled when standing on point `index`."""
        if self.total_km <= 0:
            return 0.0
        return self._cumulative_km[index] / self.total_km

    def index_at_progress(self, progress: float) -> int:
        """Index of the last route point at or before `progress`."""
        if not self._points:
            raise EmptyRouteError("Cannot index an empty route")
        target = min(max(progress, 0.0), 1.0) * self.total_km
        return max(bisect_right(self._cumulative_km, target) - 1, 0)


RouteLike = Union[Route, Sequence[GeoPoint]]


def _as_route(route: RouteLike) -> Route:
    return route if isinstance(route, Route) else Route(route)


def route_distance_km(points: Sequence[GeoPoint]) -> float:
    """Sum of consecutive-point haversine distances."""
    return sum(distance_km(a, b) for a, b in zip(points[:-1], points[1:]))


def interpolate(route: RouteLike, progress: float) -> GeoPoint:
    """
    Position at `progress` along the route.

    progress <= 0 -> first point, progress >= 1 -> last point. Otherwise the
    segment bracketing progress * total distance is found in the cumulative
    table and lat/lng are interpolated linearly inside it.
    """
    route = _as_route(route)
    if len(route) == 0:
        raise EmptyRouteError("Cannot interpolate on an empty route")

    if progress <= 0:
        return route[0]
    if progress >= 1:
        return route[-1]

    total = route.total_km
    if total <= 0:
        # all points coincide
        return route[0]

    cumulative = route._cumulative_km
    target = progress * total
    index = bisect_left(cumulative, target)
    if index <= 0:
        return route[0]
    if index >= len(cumulative):
        return route[-1]

    segment_start = cumulative[index - 1]
    segment_length = cumulative[index] - segment_start
    if segment_length <= 0:
        return route[index]

    fraction = (target - segment_start) / segment_length
    p1, p2 = route[index - 1], route[index]
    return GeoPoint(
        lat=p1.lat + (p2.lat - p1.lat) * fraction,
        lng=p1.lng + (p2.lng - p1.lng) * fraction,
    )


def heading_at(route: RouteLike, progress: float, epsilon: float = HEADING_EPSILON) -> float:
    """
    Heading (degrees) of travel at `progress`: bearing from the position at
    progress to the position at progress + epsilon.

    Known edge case: at the very end of the route both positions collapse
    onto the last point and the heading is not meaningful.
    """
    route = _as_route(route)
    here = interpolate(route, progress)
    ahead = interpolate(route, min(progress + epsilon, 1.0))
    return bearing_degrees(here, ahead)


def nearest_point_index(route: RouteLike, position: GeoPoint, start_index: int = 0) -> int:
    """Index of the route point nearest to `position`, searching from start_index on."""
    route = _as_route(route)
    if len(route) == 0:
        raise EmptyRouteError("Cannot search an empty route")

    best_index = start_index
    best_distance = float("inf")
    for index in range(start_index, len(route)):
        dist = distance_km(position, route[index])
        if dist < best_distance:
            best_distance = dist
            best_index = index
    return best_index

"""
Purpose: Build a detour route that avoids one or more risk zones and rejoins
the original route after each of them.

What it does:

- locates, for every zone ahead of the truck, where the original route
  approaches it (entry / exit indices, searched forward only)

- proposes avoidance waypoints perpendicular to the direction of travel,
  escalating the offset until the routed road segment keeps clear of every
  avoided zone

- stitches connector + original stretches + avoidance segments + final leg

- re-validates the assembled route and does one wider second pass if needed

Rule: the routing collaborator is only ever asked for road geometry. All
clearance decisions are made here, with routing.geofence.zone_clearance_km.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from .geodesy import bearing_degrees, destination_point, distance_km
from .geofence import zone_clearance_km
from .models import GeoPoint, Zone
from .osrm_client import RoutingUnavailableError
from .route_cache import RouteProvider
from .route_service import EmptyRouteError, Route, RouteLike, nearest_point_index

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetourPolicy:
    """
    Central configuration for detour construction (all distances in km).

    Notes:
    - approach_radius_km: where the original route counts as "near" a zone.
    - safe_distance_km: entry/exit points must be at least this far away.
    - clearance_km: every point of an accepted detour must be further than this.
    - offsets: the first candidate offset is max(min_offset_km, zone radius +
      zone_margin_km), then every larger value of offset_ladder_km.
    """

    approach_radius_km: float = 10.0
    safe_distance_km: float = 15.0
    clearance_km: float = 3.0

    min_offset_km: float = 8.0
    zone_margin_km: float = 5.0
    offset_ladder_km: Tuple[float, ...] = (12.0, 16.0, 20.0, 25.0, 30.0)

    # Best-effort offset when no candidate validates (no re-validation).
    fallback_offset_km: float = 40.0
    # Fixed offset for every zone when the assembled route fails validation.
    second_pass_offset_km: float = 35.0

    # Current position closer than this to the route needs no connector leg.
    on_route_tolerance_km: float = 0.5

    def validate(self) -> None:
        """
        Basic sanity checks.
        """
        if self.clearance_km <= 0:
            raise ValueError("clearance_km must be > 0")

        if self.approach_radius_km <= self.clearance_km:
            raise ValueError("approach_radius_km must be > clearance_km")

        if self.safe_distance_km < self.approach_radius_km:
            raise ValueError("safe_distance_km must be >= approach_radius_km")

        if self.min_offset_km <= 0 or self.fallback_offset_km <= 0 or self.second_pass_offset_km <= 0:
            raise ValueError("detour offsets must be > 0")

        if any(offset <= 0 for offset in self.offset_ladder_km):
            raise ValueError("offset_ladder_km values must be > 0")

        if self.on_route_tolerance_km < 0:
            raise ValueError("on_route_tolerance_km must be >= 0")


def default_detour_policy() -> DetourPolicy:
    """
    Convenience factory for the default policy.
    """
    p = DetourPolicy()
    p.validate()
    return p


class DetourStatus(str, Enum):
    VALIDATED = "VALIDATED"
    # Best available route returned anyway; callers must surface a warning.
    VALIDATION_FAILED = "VALIDATION_FAILED"


@dataclass(frozen=True)
class ZoneCrossing:
    """
    Where the original route meets one zone.
    entry_index < approach_index < exit_index unless the truck is already
    inside the safe distance (entry == start) or the zone sits on the
    destination (exit == last index).
    """
    zone: Zone
    approach_index: int
    entry_index: int
    exit_index: int


@dataclass(frozen=True)
class AvoidanceSegment:
    """Road geometry from a crossing's entry point to its exit point around the zone."""
    crossing: ZoneCrossing
    points: List[GeoPoint]
    waypoint: GeoPoint
    offset_km: float
    distance_km: float
    validated: bool


@dataclass(frozen=True)
class DetourResult:
    route: Route
    distance_km: float
    status: DetourStatus
    passes: int
    min_clearance_km: float
    crossings: List[ZoneCrossing] = field(default_factory=list)
    segments: List[AvoidanceSegment] = field(default_factory=list)

    @property
    def is_validated(self) -> bool:
        return self.status == DetourStatus.VALIDATED


# -------------------------
# Clearance helpers
# -------------------------

def zone_radius_km(zone: Zone) -> float:
    """Largest centroid -> vertex distance."""
    if not zone.coordinates:
        return 0.0
    centroid = zone.centroid()
    return max(distance_km(centroid, vertex) for vertex in zone.coordinates)


def min_clearance_km(points: Sequence[GeoPoint], zones: Sequence[Zone]) -> float:
    """Smallest distance from any point to any zone (inf when there is nothing to check)."""
    clearance = float("inf")
    for zone in zones:
        for point in points:
            clearance = min(clearance, zone_clearance_km(point, zone))
            if clearance == 0.0:
                return 0.0
    return clearance


def is_clear(points: Sequence[GeoPoint], zones: Sequence[Zone], clearance_km: float) -> bool:
    """True when every point is strictly further than clearance_km from every zone."""
    return min_clearance_km(points, zones) > clearance_km


def find_zone_crossings(
    route: Route,
    zones: Sequence[Zone],
    *,
    start_index: int = 0,
    approach_radius_km: float = 10.0,
    safe_distance_km: float = 15.0,
) -> List[ZoneCrossing]:
    """
    Entry/exit indices for every zone the route approaches at or after
    start_index, ordered by where the route first comes near each zone.

    Searches only forward: a zone already behind the truck is never
    re-detoured, and each zone's search starts at the previous exit.
    """
    clearances: Dict[str, List[float]] = {}
    first_approach: Dict[str, int] = {}

    for zone in zones:
        if len(zone.coordinates) < 3:
            continue
        distances = [zone_clearance_km(point, zone) for point in route]
        clearances[zone.id] = distances
        for index in range(start_index, len(distances)):
            if distances[index] <= approach_radius_km:
                first_approach[zone.id] = index
                break

    ordered = sorted(
        (zone for zone in zones if zone.id in first_approach),
        key=lambda zone: first_approach[zone.id],
    )

    crossings: List[ZoneCrossing] = []
    cursor = start_index
    last_index = len(route) - 1

    for zone in ordered:
        distances = clearances[zone.id]

        approach_index = next(
            (i for i in range(cursor, len(distances)) if distances[i] <= approach_radius_km),
            None,
        )
        if approach_index is None:
            # only came near this zone on a stretch an earlier detour already skips
            continue

        entry_index = next(
            (i for i in range(approach_index - 1, cursor - 1, -1) if distances[i] > safe_distance_km),
            cursor,
        )
        exit_index = next(
            (i for i in range(approach_index + 1, len(distances)) if distances[i] > safe_distance_km),
            last_index,
        )

        crossings.append(ZoneCrossing(
            zone=zone,
            approach_index=approach_index,
            entry_index=entry_index,
            exit_index=exit_index,
        ))
        cursor = exit_index

    return crossings


def _extend(points: List[GeoPoint], more: Sequence[GeoPoint]) -> None:
    """Append, skipping a leading point that repeats the current tail."""
    for point in more:
        if points and points[-1].is_close(point):
            continue
        points.append(point)


# -------------------------
# Builder
# -------------------------

class DetourRouteBuilder:
    """
    Constructs zone-avoiding routes with the help of a RouteProvider
    (OSRMClient, usually wrapped in CachingRouteProvider).

    Usage:
        builder = DetourRouteBuilder(router)
        result = builder.build(original_route, truck_position, destination, [zone])
        if not result.is_validated:
            ...surface a warning, the route is best effort...
    """

    def __init__(self, route_provider: RouteProvider, policy: Optional[DetourPolicy] = None):
        self.route_provider = route_provider
        self.policy = policy or default_detour_policy()

    def build(
        self,
        original_route: RouteLike,
        current_position: GeoPoint,
        destination: GeoPoint,
        zones_to_avoid: Sequence[Zone],
        *,
        start_index: Optional[int] = None,
    ) -> DetourResult:
        """
        Build the detour.

        Args:
            original_route: the route the truck is on.
            current_position: where the truck is now (the detour starts here).
            destination: journey destination (end of the final leg).
            zones_to_avoid: polygons to keep clear of.
            start_index: index on original_route the truck has reached;
                defaults to the route point nearest current_position.

        Raises:
            EmptyRouteError: original_route has no points.
            RoutingUnavailableError: a zone could not be routed around even
                with the best-effort fallback offset.
        """
        self.policy.validate()

        route = original_route if isinstance(original_route, Route) else Route(original_route)
        if len(route) == 0:
            raise EmptyRouteError("Cannot build a detour from an empty route")

        zones = [zone for zone in zones_to_avoid if len(zone.coordinates) >= 3]
        if start_index is None:
            start_index = nearest_point_index(route, current_position)

        connector = self._connector(route, current_position, start_index)
        crossings = find_zone_crossings(
            route,
            zones,
            start_index=start_index,
            approach_radius_km=self.policy.approach_radius_km,
            safe_distance_km=self.policy.safe_distance_km,
        )
        logger.info(f"Detour: {len(crossings)} zone crossing(s) ahead of index {start_index}")

        segments = [self._plan_segment(crossing, route, zones, destination) for crossing in crossings]
        final_leg = self._final_leg(route, crossings, start_index, destination)

        points = self._assemble(connector, route, start_index, segments, final_leg)
        clearance = min_clearance_km(points, zones)
        passes = 1

        # second (and last) pass: one fixed wider offset for every zone at once
        if clearance <= self.policy.clearance_km and crossings:
            passes = 2
            logger.warning(
                f"Detour min clearance {clearance:.2f} km <= {self.policy.clearance_km} km; "
                f"retrying with {self.policy.second_pass_offset_km} km offsets"
            )
            wider = [
                self._fixed_offset_segment(crossing, route, zones, destination,
                                           self.policy.second_pass_offset_km) or first
                for crossing, first in zip(crossings, segments)
            ]
            wider_points = self._assemble(connector, route, start_index, wider, final_leg)
            wider_clearance = min_clearance_km(wider_points, zones)
            if wider_clearance > clearance:
                points, segments, clearance = wider_points, wider, wider_clearance

        status = DetourStatus.VALIDATED if clearance > self.policy.clearance_km else DetourStatus.VALIDATION_FAILED
        if status == DetourStatus.VALIDATION_FAILED:
            logger.warning(f"Detour failed clearance validation after {passes} pass(es) "
                           f"(min clearance {clearance:.2f} km); returning best available route")

        detour_route = Route(points)
        return DetourResult(
            route=detour_route,
            distance_km=detour_route.total_km,
            status=status,
            passes=passes,
            min_clearance_km=clearance,
            crossings=crossings,
            segments=segments,
        )

    # --- legs ---

    def _connector(self, route: Route, current_position: GeoPoint, start_index: int) -> List[GeoPoint]:
        """Current position plus, when off the route, a routed hop back onto it."""
        rejoin = route[start_index]
        if distance_km(current_position, rejoin) <= self.policy.on_route_tolerance_km:
            return [current_position]

        points = [current_position]
        try:
            _extend(points, self.route_provider.get_route(current_position, rejoin).points)
        except RoutingUnavailableError as e:
            logger.warning(f"Connector routing failed, using a straight hop: {e}")
            _extend(points, [rejoin])
        return points

    def _final_leg(
        self,
        route: Route,
        crossings: List[ZoneCrossing],
        start_index: int,
        destination: GeoPoint,
    ) -> List[GeoPoint]:
        """Last exit -> destination; the untouched remainder when there is nothing to avoid."""
        if not crossings:
            remainder = route[start_index:]
            if not remainder[-1].is_close(destination):
                remainder.append(destination)
            return remainder

        last_exit = route[crossings[-1].exit_index]
        if last_exit.is_close(destination):
            return [destination]
        try:
            return list(self.route_provider.get_route(last_exit, destination).points)
        except RoutingUnavailableError as e:
            logger.warning(f"Final leg routing failed, reusing the original route: {e}")
            remainder = route[crossings[-1].exit_index:]
            if not remainder[-1].is_close(destination):
                remainder.append(destination)
            return remainder

    @staticmethod
    def _assemble(
        connector: Sequence[GeoPoint],
        route: Route,
        start_index: int,
        segments: Sequence[AvoidanceSegment],
        final_leg: Sequence[GeoPoint],
    ) -> List[GeoPoint]:
        points: List[GeoPoint] = []
        _extend(points, connector)

        cursor = start_index
        for segment in segments:
            # original route up to the entry point, then around the zone
            _extend(points, route[cursor:segment.crossing.entry_index + 1])
            _extend(points, segment.points)
            cursor = segment.crossing.exit_index

        _extend(points, final_leg)
        return points

    # --- per-zone avoidance ---

    def _offsets_for(self, zone: Zone) -> List[float]:
        first = max(self.policy.min_offset_km, zone_radius_km(zone) + self.policy.zone_margin_km)
        return [first] + [offset for offset in self.policy.offset_ladder_km if offset > first]

    @staticmethod
    def _travel_bearing(entry: GeoPoint, exit_point: GeoPoint, destination: GeoPoint) -> float:
        if entry.is_close(exit_point):
            return bearing_degrees(entry, destination)
        return bearing_degrees(entry, exit_point)

    def _waypoints(self, crossing: ZoneCrossing, route: Route, destination: GeoPoint,
                   offset_km: float) -> List[GeoPoint]:
        """Both perpendicular candidates (left, right) at offset_km from the zone centroid."""
        travel = self._travel_bearing(route[crossing.entry_index], route[crossing.exit_index], destination)
        centroid = crossing.zone.centroid()
        return [
            destination_point(centroid, (travel - 90.0) % 360.0, offset_km),
            destination_point(centroid, (travel + 90.0) % 360.0, offset_km),
        ]

    def _route_via(self, crossing: ZoneCrossing, route: Route, waypoint: GeoPoint,
                   offset_km: float, zones: Sequence[Zone]) -> AvoidanceSegment:
        """Raises RoutingUnavailableError from the provider."""
        result = self.route_provider.get_route(
            route[crossing.entry_index], route[crossing.exit_index], via=[waypoint]
        )
        return AvoidanceSegment(
            crossing=crossing,
            points=list(result.points),
            waypoint=waypoint,
            offset_km=offset_km,
            distance_km=result.distance_km,
            validated=is_clear(result.points, zones, self.policy.clearance_km),
        )

    def _plan_segment(self, crossing: ZoneCrossing, route: Route, zones: Sequence[Zone],
                      destination: GeoPoint) -> AvoidanceSegment:
        """
        Escalate the offset; at the first offset where at least one side
        validates keep the shorter validated side. Otherwise fall back.
        """
        for offset_km in self._offsets_for(crossing.zone):
            validated: List[AvoidanceSegment] = []
            for waypoint in self._waypoints(crossing, route, destination, offset_km):
                try:
                    segment = self._route_via(crossing, route, waypoint, offset_km, zones)
                except RoutingUnavailableError as e:
                    logger.warning(f"Candidate route around {crossing.zone.name} at {offset_km} km failed: {e}")
                    continue
                if segment.validated:
                    validated.append(segment)

            if validated:
                best = min(validated, key=lambda segment: segment.distance_km)
                logger.info(f"Avoiding {crossing.zone.name} at {offset_km} km offset ({best.distance_km:.1f} km)")
                return best

        return self._fallback_segment(crossing, route, zones, destination)

    def _fallback_segment(self, crossing: ZoneCrossing, route: Route, zones: Sequence[Zone],
                          destination: GeoPoint) -> AvoidanceSegment:
        """
        Best effort: fixed fallback offset on the side whose waypoint is
        furthest from all zones. No clearance re-validation of the segment.
        """
        offset_km = self.policy.fallback_offset_km
        waypoint = max(
            self._waypoints(crossing, route, destination, offset_km),
            key=lambda candidate: min_clearance_km([candidate], zones),
        )
        logger.warning(f"No validated candidate around {crossing.zone.name}; "
                       f"falling back to {offset_km} km offset")

        # RoutingUnavailableError propagates: every fallback for this zone is exhausted
        result = self.route_provider.get_route(
            route[crossing.entry_index], route[crossing.exit_index], via=[waypoint]
        )
        return AvoidanceSegment(
            crossing=crossing,
            points=list(result.points),
            waypoint=waypoint,
            offset_km=offset_km,
            distance_km=result.distance_km,
            validated=False,
        )

    def _fixed_offset_segment(self, crossing: ZoneCrossing, route: Route, zones: Sequence[Zone],
                              destination: GeoPoint, offset_km: float) -> Optional[AvoidanceSegment]:
        """
        Second-pass segment at a fixed offset: the shorter validated side, else
        the side with the larger clearance. None when neither side routes.
        """
        candidates: List[AvoidanceSegment] = []
        for waypoint in self._waypoints(crossing, route, destination, offset_km):
            try:
                candidates.append(self._route_via(crossing, route, waypoint, offset_km, zones))
            except RoutingUnavailableError as e:
                logger.warning(f"Second-pass route around {crossing.zone.name} failed: {e}")

        if not candidates:
            return None

        validated = [segment for segment in candidates if segment.validated]
        if validated:
            return min(validated, key=lambda segment: segment.distance_km)
        return max(candidates, key=lambda segment: min_clearance_km(segment.points, zones))

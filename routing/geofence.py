#Purpose: Geofence and redzone proximity logic.
#Pure evaluators over (position, latch state). They report what happened;
#pausing, calling the driver, or detouring is the dispatcher's job.
#Typical responsibilities:
#destination geofence: inside radius? first time (latch transition)?
#redzones: which risk zone (if any) is within the approach radius?
#clearance: how far is a point from a zone (0 when inside it)?
#Output: small frozen result objects the tick/dispatcher consume.

from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional

from routing.geodesy import distance_km, distance_point_to_polygon, point_in_polygon
from routing.models import GeoPoint, Zone, ZoneCategory

GEOFENCE_RADIUS_KM = 10.0
REDZONE_RADIUS_KM = 10.0

REDZONE_CATEGORIES: FrozenSet[ZoneCategory] = frozenset({
    ZoneCategory.HIGH_RISK,
    ZoneCategory.THEFT,
    ZoneCategory.PILFERAGE,
})


@dataclass(frozen=True)
class GeofenceCheck:
    """
    Result of one geofence evaluation.
    entered is True only on the tick the latch flips (exactly once per run).
    """
    distance_km: float
    inside: bool
    entered: bool


@dataclass(frozen=True)
class RedzoneApproach:
    """A redzone within the approach radius of the truck."""
    zone: Zone
    distance_km: float


def check_geofence(
    position: GeoPoint,
    destination: GeoPoint,
    *,
    radius_km: float = GEOFENCE_RADIUS_KM,
    already_entered: bool = False,
) -> GeofenceCheck:
    """
    inside  = distance(position, destination) <= radius_km
    entered = inside and the latch was not already set
    """
    dist = distance_km(position, destination)
    inside = dist <= radius_km
    return GeofenceCheck(distance_km=dist, inside=inside, entered=inside and not already_entered)


def zone_clearance_km(point: GeoPoint, zone: Zone) -> float:
    """Distance from point to the zone boundary, 0 when the point is inside the zone."""
    if point_in_polygon(point, zone.coordinates):
        return 0.0
    return distance_point_to_polygon(point, zone.coordinates)


def zone_proximity_km(position: GeoPoint, zone: Zone) -> float:
    """
    Proximity used for the redzone alert:
    min(distance to centroid, distance to boundary), 0 when inside.
    """
    if len(zone.coordinates) < 3:
        return float("inf")
    return min(distance_km(position, zone.centroid()), zone_clearance_km(position, zone))


def find_redzone_approach(
    position: GeoPoint,
    zones: Iterable[Zone],
    *,
    radius_km: float = REDZONE_RADIUS_KM,
    categories: FrozenSet[ZoneCategory] = REDZONE_CATEGORIES,
    latched_zone_id: Optional[str] = None,
    ignore_zone_ids: FrozenSet[str] = frozenset(),
) -> Optional[RedzoneApproach]:
    """
    The redzone the truck is approaching, if any.

    Returns None while an alert is latched (only one redzone alert is active
    at a time). Zones already resolved by the user (detoured or continued
    through) are passed in ignore_zone_ids so they do not fire again.

    When several zones are within range the nearest wins; equal distances
    fall back to the order the zones were given in.
    """
    if latched_zone_id is not None:
        return None

    candidates: List[RedzoneApproach] = []
    for zone in zones:
        if zone.category not in categories or zone.id in ignore_zone_ids:
            continue
        if len(zone.coordinates) < 3:
            continue

        proximity = zone_proximity_km(position, zone)
        if proximity <= radius_km:
            candidates.append(RedzoneApproach(zone=zone, distance_km=proximity))

    if not candidates:
        return None

    # min() keeps the first of equal elements, giving the input-order tie-break
    return min(candidates, key=lambda approach: approach.distance_km)

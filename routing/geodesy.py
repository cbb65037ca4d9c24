#Purpose: Pure geographic math on GeoPoints (kilometres and degrees).
#No state, no side effects, no imports from other project packages except the models.
#Everything here is total: only explicitly degenerate input (polygons with < 3
#vertices) gets a sentinel value (+inf) instead of a number.

import math
from typing import Sequence

from routing.models import GeoPoint

EARTH_RADIUS_KM = 6371.0


def distance_km(a: GeoPoint, b: GeoPoint) -> float:
    """
    Haversine great-circle distance between two points in kilometres.
    Symmetric, and distance_km(a, a) == 0.
    """
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat))
        * math.cos(math.radians(b.lat))
        * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def bearing_degrees(origin: GeoPoint, target: GeoPoint) -> float:
    """
    Initial bearing from origin to target, 0 = North, clockwise, in [0, 360).
    For origin == target the value is meaningless (atan2(0, 0) gives 0).
    """
    lat1, lat2 = math.radians(origin.lat), math.radians(target.lat)
    d_lng = math.radians(target.lng - origin.lng)
    y = math.sin(d_lng) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(d_lng)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def destination_point(origin: GeoPoint, bearing_deg: float, dist_km: float) -> GeoPoint:
    """
    Forward geodesic projection on a sphere: the point reached travelling
    dist_km from origin along the initial bearing bearing_deg.
    """
    angular = dist_km / EARTH_RADIUS_KM
    theta = math.radians(bearing_deg)
    lat1 = math.radians(origin.lat)
    lng1 = math.radians(origin.lng)

    lat2 = math.asin(
        math.sin(lat1) * math.cos(angular)
        + math.cos(lat1) * math.sin(angular) * math.cos(theta)
    )
    lng2 = lng1 + math.atan2(
        math.sin(theta) * math.sin(angular) * math.cos(lat1),
        math.cos(angular) - math.sin(lat1) * math.sin(lat2),
    )
    # normalise longitude to [-180, 180)
    lng_deg = (math.degrees(lng2) + 540.0) % 360.0 - 180.0
    return GeoPoint(lat=math.degrees(lat2), lng=lng_deg)


def distance_point_to_segment(point: GeoPoint, seg_start: GeoPoint, seg_end: GeoPoint) -> float:
    """
    Minimum distance (km) from point to the segment seg_start -> seg_end.

    The point is projected onto the segment in a local equirectangular frame
    (longitude scaled by cos of the mean latitude). If the projection parameter
    falls outside [0, 1] the distance to the nearest endpoint is returned,
    otherwise the haversine distance to the projected point.
    """
    lat_scale = math.cos(math.radians((seg_start.lat + seg_end.lat + point.lat) / 3.0))

    seg_dx = (seg_end.lng - seg_start.lng) * lat_scale
    seg_dy = seg_end.lat - seg_start.lat
    pt_dx = (point.lng - seg_start.lng) * lat_scale
    pt_dy = point.lat - seg_start.lat

    length_sq = seg_dx * seg_dx + seg_dy * seg_dy
    if length_sq == 0:
        return distance_km(point, seg_start)

    t = (pt_dx * seg_dx + pt_dy * seg_dy) / length_sq
    if t < 0:
        return distance_km(point, seg_start)
    if t > 1:
        return distance_km(point, seg_end)

    projected = GeoPoint(
        lat=seg_start.lat + t * (seg_end.lat - seg_start.lat),
        lng=seg_start.lng + t * (seg_end.lng - seg_start.lng),
    )
    return distance_km(point, projected)


def distance_point_to_polygon(point: GeoPoint, polygon: Sequence[GeoPoint]) -> float:
    """
    Minimum distance (km) from point to any edge of the closed polygon.
    Returns +inf for fewer than 3 vertices. Does not care whether the point
    is inside; see point_in_polygon for that.
    """
    if len(polygon) < 3:
        return math.inf

    min_distance = math.inf
    for index, start in enumerate(polygon):
        end = polygon[(index + 1) % len(polygon)]
        min_distance = min(min_distance, distance_point_to_segment(point, start, end))
    return min_distance


def point_in_polygon(point: GeoPoint, polygon: Sequence[GeoPoint]) -> bool:
    """Even-odd ray casting in lat/lng space. False for fewer than 3 vertices."""
    if len(polygon) < 3:
        return False

    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        a, b = polygon[i], polygon[j]
        if (a.lat > point.lat) != (b.lat > point.lat):
            crossing_lng = a.lng + (point.lat - a.lat) * (b.lng - a.lng) / (b.lat - a.lat)
            if point.lng < crossing_lng:
                inside = not inside
        j = i
    return inside

#Marks routing as a package.
#Re-exports the public APIs (OSRMClient, geodesy, interpolation, ETA,
#geofence/redzone detection, detour building) so other modules import from
#routing without knowing internal file names.
#No business logic.

from .models import GeoPoint, RouteResult, Zone, ZoneCategory
from .geodesy import (
    bearing_degrees,
    destination_point,
    distance_km,
    distance_point_to_polygon,
    distance_point_to_segment,
)
from .route_service import EmptyRouteError, Route, heading_at, interpolate, route_distance_km
from .eta_service import InvalidSpeedError, advance_progress, estimate_eta, eta_minutes, remaining_distance_km
from .geofence import RedzoneApproach, check_geofence, find_redzone_approach
from .osrm_client import OSRMClient, RoutingUnavailableError
from .route_cache import CachingRouteProvider, RouteProvider
from .zone_store import ZoneStore
from .detour import DetourPolicy, DetourResult, DetourRouteBuilder, DetourStatus

__all__ = [
           "GeoPoint",
           "RouteResult",
           "Zone",
           "ZoneCategory",
           "bearing_degrees",
           "destination_point",
           "distance_km",
           "distance_point_to_polygon",
           "distance_point_to_segment",
           "EmptyRouteError",
           "Route",
           "heading_at",
           "interpolate",
           "route_distance_km",
           "InvalidSpeedError",
           "advance_progress",
           "estimate_eta",
           "eta_minutes",
           "remaining_distance_km",
           "RedzoneApproach",
           "check_geofence",
           "find_redzone_approach",
           "OSRMClient",
           "RoutingUnavailableError",
           "CachingRouteProvider",
           "RouteProvider",
           "ZoneStore",
           "DetourPolicy",
           "DetourResult",
           "DetourRouteBuilder",
           "DetourStatus",
           ]

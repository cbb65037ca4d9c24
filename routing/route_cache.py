from __future__ import annotations

from typing import Dict, Protocol, Sequence, Tuple

from .models import GeoPoint, RouteResult

# 5 decimals is ~1 m, well below anything the router distinguishes
CACHE_PRECISION = 5

CacheKey = Tuple[Tuple[float, float], ...]


class RouteProvider(Protocol):
    """Anything that can answer get_route (OSRMClient, the cache, test fakes)."""

    def get_route(self, origin: GeoPoint, destination: GeoPoint,
                  via: Sequence[GeoPoint] = ()) -> RouteResult:
        ...


class CachingRouteProvider:
    """
    Wraps a RouteProvider (normally routing.osrm_client.OSRMClient) and memoises
    successful answers per coordinate sequence.

    The detour builder asks for the same entry -> exit legs on each pass, and
    the dispatcher re-requests next-load routes; both become instant after the
    first call. Failures are not cached so a flaky router gets retried.
    """
    def __init__(self, route_provider: RouteProvider):
        self.route_provider = route_provider
        self._cache: Dict[CacheKey, RouteResult] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _key(coordinates: Sequence[GeoPoint]) -> CacheKey:
        return tuple(
            (round(point.lat, CACHE_PRECISION), round(point.lng, CACHE_PRECISION))
            for point in coordinates
        )

    def get_route(self, origin: GeoPoint, destination: GeoPoint,
                  via: Sequence[GeoPoint] = ()) -> RouteResult:
        key = self._key([origin, *via, destination])
        if key in self._cache:
            self.hits += 1
            return self._cache[key]

        self.misses += 1
        result = self.route_provider.get_route(origin, destination, via=via)
        self._cache[key] = result
        return result

    def clear(self) -> None:
        self._cache.clear()


def caching_route_provider(route_provider: RouteProvider) -> CachingRouteProvider:
    """
    Convenience factory mirroring how the dispatcher wires its router.
    Avoids double-wrapping an already cached provider.
    """
    if isinstance(route_provider, CachingRouteProvider):
        return route_provider
    return CachingRouteProvider(route_provider)

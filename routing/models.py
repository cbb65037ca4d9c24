"""
Purpose: Shared geographic data structures for the routing capability.
What it does:
- GeoPoint (lat, lng) immutable WGS84 coordinate
- RouteResult (normalized output of the routing collaborator)
- Zone (risk polygon) and ZoneCategory

Rule: No HTTP calls, no simulation logic. Models only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

LatLon = Tuple[float, float]

# "same point" tolerance in degrees
POINT_EPSILON_DEG = 1e-4


@dataclass(frozen=True)
class GeoPoint:
    """Immutable geographic coordinate in decimal degrees."""
    lat: float
    lng: float

    def is_close(self, other: GeoPoint, epsilon: float = POINT_EPSILON_DEG) -> bool:
        return abs(self.lat - other.lat) <= epsilon and abs(self.lng - other.lng) <= epsilon

    def as_lat_lon(self) -> LatLon:
        return (self.lat, self.lng)

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> GeoPoint:
        return cls(lat=float(data["lat"]), lng=float(data["lng"]))


@dataclass(frozen=True)
class RouteResult:
    """
    What the routing collaborator returns for one request.
    distance_km is the road distance reported by the router, not a haversine sum.
    """
    distance_km: float
    points: List[GeoPoint]
    duration_s: Optional[float] = None


class ZoneCategory(str, Enum):
    THEFT = "THEFT"
    PILFERAGE = "PILFERAGE"
    STOPPAGE = "STOPPAGE"
    HIGH_RISK = "HIGH_RISK"
    ACCIDENT_PRONE = "ACCIDENT_PRONE"
    TRAFFIC_CONGESTION = "TRAFFIC_CONGESTION"
    CUSTOM = "CUSTOM"


@dataclass(frozen=True)
class Zone:
    """
    A risk polygon. Read-only to the simulation during a run.
    coordinates is the open ring (the closing edge last -> first is implied).
    """
    id: str
    name: str
    category: ZoneCategory
    coordinates: Tuple[GeoPoint, ...] = field(default_factory=tuple)
    description: Optional[str] = None

    def centroid(self) -> GeoPoint:
        """Vertex average. Good enough for the small polygons drawn on the map."""
        if not self.coordinates:
            raise ValueError(f"Zone {self.id} has no coordinates")
        count = len(self.coordinates)
        return GeoPoint(
            lat=sum(point.lat for point in self.coordinates) / count,
            lng=sum(point.lng for point in self.coordinates) / count,
        )

    @classmethod
    def new(
        cls,
        zone_id: str,
        name: str,
        category: str | ZoneCategory,
        coordinates: Iterable[GeoPoint | LatLon],
        description: Optional[str] = None,
    ) -> Zone:
        if isinstance(category, str):
            category = ZoneCategory(category)

        points = tuple(
            point if isinstance(point, GeoPoint) else GeoPoint(float(point[0]), float(point[1]))
            for point in coordinates
        )
        return cls(id=zone_id, name=name, category=category, coordinates=points, description=description)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Zone:
        return cls.new(
            zone_id=str(data["id"]),
            name=data.get("name", str(data["id"])),
            category=data.get("category", ZoneCategory.CUSTOM.value),
            coordinates=[GeoPoint.from_dict(point) for point in data.get("coordinates", [])],
            description=data.get("description"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "coordinates": [point.to_dict() for point in self.coordinates],
            "description": self.description,
        }

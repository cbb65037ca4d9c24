#Purpose: Read-only zone list for simulation runs.
#Zones are drawn/persisted elsewhere; here they are loaded once (JSON file or
#an iterable) and handed to each run as an immutable list.

import json
import logging
from typing import Iterable, List, Optional

from routing.models import Zone, ZoneCategory

logger = logging.getLogger(__name__)


class ZoneStore:
    def __init__(self, zones: Iterable[Zone] = ()):
        self._zones: List[Zone] = []
        seen = set()
        for zone in zones:
            if zone.id in seen:
                logger.warning(f"Duplicate zone id {zone.id} ignored")
                continue
            seen.add(zone.id)
            self._zones.append(zone)

    def __len__(self) -> int:
        return len(self._zones)

    def list_zones(self, categories: Optional[Iterable[ZoneCategory]] = None) -> List[Zone]:
        if categories is None:
            return list(self._zones)
        wanted = set(categories)
        return [zone for zone in self._zones if zone.category in wanted]

    def get(self, zone_id: str) -> Optional[Zone]:
        for zone in self._zones:
            if zone.id == zone_id:
                return zone
        return None

    @classmethod
    def from_json(cls, filepath: str) -> "ZoneStore":
        """
        JSON list of {id, name, category, coordinates: [{lat, lng}, ...]}.
        Polygons with fewer than 3 points are skipped.
        """
        with open(filepath, "r", encoding="utf-8") as f:
            data = json.load(f)

        zones = []
        for item in data:
            zone = Zone.from_dict(item)
            if len(zone.coordinates) < 3:
                logger.warning(f"Zone {zone.id} has {len(zone.coordinates)} points, skipped")
                continue
            zones.append(zone)

        logger.info(f"Loaded {len(zones)} zones from {filepath}")
        return cls(zones)

    def to_json(self, filepath: str) -> None:
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump([zone.to_dict() for zone in self._zones], f, indent=2)

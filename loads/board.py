"""
Purpose: Manages the load lifecycle (AVAILABLE -> OFFERED -> ASSIGNED).
What it does:
- Owns the in-memory load list and its status transitions:
   - offer(load_id)    AVAILABLE -> OFFERED   (a call is being made)
   - assign(load_id)   OFFERED   -> ASSIGNED  (driver accepted)
   - release(load_id)  OFFERED   -> AVAILABLE (driver declined / no answer)
   - exhaust(load_id)  any       -> EXHAUSTED

- Remembers, per journey, which loads were offered and not accepted so
  the next call attempt offers something else.

- Picks the next load to offer: nearest available pickup to a point
  (normally the journey destination).

Rule: Board owns state transitions, the dispatcher decides when to call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

import pandas as pd

from routing.geodesy import distance_km
from routing.models import GeoPoint

from .models import Load, LoadStatus

logger = logging.getLogger(__name__)


class LoadStateException(Exception):
    """Raised when an invalid load transition is attempted."""
    pass


@dataclass
class BoardStats:
    available_count: int
    offered_count: int
    assigned_count: int
    exhausted_count: int
    now: datetime = field(default_factory=datetime.utcnow)


@dataclass
class LoadBoard:
    """
    In-memory load board.

    AVAILABLE -> OFFERED -> ASSIGNED
                    \\-> AVAILABLE (declined, recorded per journey)
    """
    _loads: Dict[str, Load] = field(default_factory=dict)
    _declined: Dict[str, Set[str]] = field(default_factory=dict)  # journey id -> load ids

    # --- Public API ---

    def add(self, load: Load) -> None:
        """
        Add a load. Idempotent: an id already on the board is left untouched.
        """
        if load.id in self._loads:
            return
        self._loads[load.id] = load

    def extend(self, loads: Iterable[Load]) -> None:
        for load in loads:
            self.add(load)

    def get(self, load_id: str) -> Optional[Load]:
        return self._loads.get(load_id)

    def available_loads(self) -> List[Load]:
        return [load for load in self._loads.values() if load.status == LoadStatus.AVAILABLE]

    def declined_for(self, journey_id: str) -> Set[str]:
        return set(self._declined.get(journey_id, set()))

    def nearest_available_load(self, point: GeoPoint, exclude_ids: Iterable[str] = ()) -> Optional[Load]:
        """
        The AVAILABLE load whose pickup is closest (haversine) to `point`,
        skipping exclude_ids. None when nothing is left to offer.
        """
        excluded = set(exclude_ids)
        candidates = [load for load in self.available_loads() if load.id not in excluded]
        if not candidates:
            return None
        return min(candidates, key=lambda load: distance_km(point, load.pickup))

    def stats(self) -> BoardStats:
        counts = {status: 0 for status in LoadStatus}
        for load in self._loads.values():
            counts[load.status] += 1
        return BoardStats(
            available_count=counts[LoadStatus.AVAILABLE],
            offered_count=counts[LoadStatus.OFFERED],
            assigned_count=counts[LoadStatus.ASSIGNED],
            exhausted_count=counts[LoadStatus.EXHAUSTED],
        )

    #---- Transition methods ----

    def offer(self, load_id: str) -> Load:
        load = self._require(load_id)
        if load.status != LoadStatus.AVAILABLE:
            raise LoadStateException(f"Cannot offer load {load_id} from {load.status.value}")
        load.status = LoadStatus.OFFERED
        return load

    def assign(self, load_id: str) -> Load:
        load = self._require(load_id)
        if load.status not in (LoadStatus.OFFERED, LoadStatus.AVAILABLE):
            raise LoadStateException(f"Cannot assign load {load_id} from {load.status.value}")
        load.status = LoadStatus.ASSIGNED
        return load

    def release(self, load_id: str, journey_id: Optional[str] = None) -> Load:
        """
        Put an offered load back on the board. With journey_id the load is
        remembered as declined for that journey and will not be re-offered to it.
        """
        load = self._require(load_id)
        if load.status == LoadStatus.OFFERED:
            load.status = LoadStatus.AVAILABLE
        if journey_id is not None:
            self._declined.setdefault(journey_id, set()).add(load_id)
        return load

    def unassign(self, load_id: str) -> Load:
        """Withdraw an assignment; the load goes back on the board."""
        load = self._require(load_id)
        if load.status != LoadStatus.ASSIGNED:
            raise LoadStateException(f"Cannot unassign load {load_id} from {load.status.value}")
        load.status = LoadStatus.AVAILABLE
        return load

    def exhaust(self, load_id: str) -> Load:
        load = self._require(load_id)
        load.status = LoadStatus.EXHAUSTED
        return load

    def _require(self, load_id: str) -> Load:
        load = self._loads.get(load_id)
        if load is None:
            raise LoadStateException(f"Unknown load {load_id}")
        return load


def load_board_from_csv(filepath: str) -> LoadBoard:
    """
    Build a LoadBoard from a CSV with columns:
    load_id, pickup_city, pickup_lat, pickup_lng, drop_city, drop_lat, drop_lng
    and optionally commodity, rate, vehicle_type.
    """
    df = pd.read_csv(filepath)

    board = LoadBoard()
    for _, row in df.iterrows():
        board.add(
            Load(
                id=str(row["load_id"]),
                pickup_city=str(row["pickup_city"]),
                pickup=GeoPoint(float(row["pickup_lat"]), float(row["pickup_lng"])),
                drop_city=str(row["drop_city"]),
                drop=GeoPoint(float(row["drop_lat"]), float(row["drop_lng"])),
                commodity=str(row.get("commodity")) if pd.notna(row.get("commodity")) else "General",
                rate=float(row.get("rate")) if pd.notna(row.get("rate")) else 0.0,
                vehicle_type=row.get("vehicle_type") if pd.notna(row.get("vehicle_type")) else None,
            )
        )

    logger.info(f"Loaded {len(df)} loads from {filepath}")
    return board

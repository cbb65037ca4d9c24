"""
Purpose: Domain models for the Loads capability.
What it does:
- Defines Load (pickup/drop cities and coords, commodity, rate, status)

Defines enums/constants:
- LoadStatus = AVAILABLE | OFFERED | ASSIGNED | EXHAUSTED

Rule: No calls, no selection logic. Models only.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from routing.models import GeoPoint


class LoadStatus(Enum):
    AVAILABLE = "AVAILABLE"
    OFFERED = "OFFERED"
    ASSIGNED = "ASSIGNED"
    EXHAUSTED = "EXHAUSTED"


@dataclass
class Load:
    """
    A freight load that can be offered to a driver nearing their destination.
    """

    id: str
    pickup_city: str
    pickup: GeoPoint
    drop_city: str
    drop: GeoPoint

    commodity: str = "General"
    rate: float = 0.0
    vehicle_type: Optional[str] = None
    special_instructions: Optional[str] = None
    expected_reporting_time: Optional[datetime] = None

    status: LoadStatus = LoadStatus.AVAILABLE
    created_at: datetime = field(default_factory=datetime.utcnow)

    def summary(self) -> str:
        return f"{self.pickup_city} -> {self.drop_city}"

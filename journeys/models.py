"""
Purpose: Core data models for the journeys domain.
What it does:
Defines a Journey (one truck, one driver, origin -> destination) and its
status without relying on any ORM or persistence constraints.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from routing.models import GeoPoint


class JourneyStatus(str, Enum):
    """
    Lifecycle of a journey as shown on the dispatch dashboard.
    Allowed transitions live in journeys.state_machine.
    """
    NOT_STARTED = "NOT_STARTED"
    IN_TRANSIT = "IN_TRANSIT"
    NEAR_DESTINATION = "NEAR_DESTINATION"
    UNLOADING = "UNLOADING"
    COMPLETED = "COMPLETED"
    STOPPAGE = "STOPPAGE"
    AT_RISK = "AT_RISK"


@dataclass(frozen=True)
class Journey:
    """
    A stateless description of a journey. Ephemeral progress lives in
    simulation.models.SimulationState, not here.
    """
    id: str
    origin_city: str
    destination_city: str
    origin: GeoPoint
    destination: GeoPoint

    driver_name: str
    driver_phone: str
    vehicle_number: str

    fleet_type: Optional[str] = None
    transporter_name: Optional[str] = None
    assigned_load_id: Optional[str] = None
    start_time: Optional[datetime] = None

    @classmethod
    def new(
        cls,
        journey_id: str,
        origin_city: str,
        origin: tuple,
        destination_city: str,
        destination: tuple,
        driver_name: str,
        driver_phone: str,
        vehicle_number: str,
        **extra,
    ) -> Journey:
        return cls(
            id=journey_id,
            origin_city=origin_city,
            destination_city=destination_city,
            origin=GeoPoint(*origin),
            destination=GeoPoint(*destination),
            driver_name=driver_name,
            driver_phone=driver_phone,
            vehicle_number=vehicle_number,
            start_time=extra.pop("start_time", None) or datetime.now(),
            **extra,
        )

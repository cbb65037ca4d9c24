"""
Purpose: Typed, timestamped events emitted by the simulation and the dispatcher.
What it does:
- Each event kind has its own small payload dataclass with known fields.
- SimulationEvent wraps a payload with kind, level, timestamp, journey id and
  run generation, plus an `extra` dict for vendor passthrough data only.
- to_record() flattens an event into a plain dict (JSON friendly) for the
  event log.

Rule: Events describe what happened. They never trigger anything themselves.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple


class EventKind(str, Enum):
    JOURNEY_STARTED = "journey-started"
    STOPPAGE_STARTED = "stoppage-started"
    STOPPAGE_ENDED = "stoppage-ended"
    GEOFENCE_ENTERED = "geofence-entered"
    REDZONE_APPROACHED = "redzone-approached"
    DETOUR_SELECTED = "detour-selected"
    DETOUR_UNAVAILABLE = "detour-unavailable"
    CONTINUED_THROUGH_REDZONE = "continued-through-redzone"
    CALL_TRIGGERED = "call-triggered"
    CALL_FAILED = "call-failed"
    CALL_OUTCOME = "call-outcome"
    LOAD_ASSIGNED = "load-assigned"
    ARRIVED = "arrived"
    UNLOADING_COMPLETED = "unloading-completed"
    SIMULATION_RESET = "simulation-reset"


class EventLevel(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


# --- Payloads (one per kind) ---

@dataclass(frozen=True)
class JourneyStarted:
    KIND: ClassVar[EventKind] = EventKind.JOURNEY_STARTED
    total_distance_km: float
    stoppage_count: int


@dataclass(frozen=True)
class StoppageStarted:
    KIND: ClassVar[EventKind] = EventKind.STOPPAGE_STARTED
    stoppage_position: float
    duration_seconds: float
    progress: float


@dataclass(frozen=True)
class StoppageEnded:
    KIND: ClassVar[EventKind] = EventKind.STOPPAGE_ENDED
    stoppage_position: float
    progress: float


@dataclass(frozen=True)
class GeofenceEntered:
    KIND: ClassVar[EventKind] = EventKind.GEOFENCE_ENTERED
    distance_km: float
    progress: float


@dataclass(frozen=True)
class RedzoneApproached:
    KIND: ClassVar[EventKind] = EventKind.REDZONE_APPROACHED
    zone_id: str
    zone_name: str
    category: str
    distance_km: float
    progress: float


@dataclass(frozen=True)
class DetourSelected:
    KIND: ClassVar[EventKind] = EventKind.DETOUR_SELECTED
    zone_ids: Tuple[str, ...]
    distance_km: float
    validation_status: str
    passes: int
    min_clearance_km: float


@dataclass(frozen=True)
class DetourUnavailable:
    KIND: ClassVar[EventKind] = EventKind.DETOUR_UNAVAILABLE
    LEVEL: ClassVar[EventLevel] = EventLevel.WARNING
    zone_ids: Tuple[str, ...]
    reason: str


@dataclass(frozen=True)
class ContinuedThroughRedzone:
    KIND: ClassVar[EventKind] = EventKind.CONTINUED_THROUGH_REDZONE
    LEVEL: ClassVar[EventLevel] = EventLevel.WARNING
    zone_id: str


@dataclass(frozen=True)
class CallTriggered:
    KIND: ClassVar[EventKind] = EventKind.CALL_TRIGGERED
    call_id: str
    purpose: str
    subject_id: str


@dataclass(frozen=True)
class CallFailed:
    KIND: ClassVar[EventKind] = EventKind.CALL_FAILED
    LEVEL: ClassVar[EventLevel] = EventLevel.ERROR
    purpose: str
    subject_id: str
    reason: str


@dataclass(frozen=True)
class CallOutcomeReceived:
    KIND: ClassVar[EventKind] = EventKind.CALL_OUTCOME
    call_id: str
    purpose: str
    outcome: str


@dataclass(frozen=True)
class LoadAssigned:
    KIND: ClassVar[EventKind] = EventKind.LOAD_ASSIGNED
    load_id: str
    pickup_city: str
    drop_city: str


@dataclass(frozen=True)
class Arrived:
    KIND: ClassVar[EventKind] = EventKind.ARRIVED
    total_distance_km: float
    simulated_seconds: float


@dataclass(frozen=True)
class UnloadingCompleted:
    KIND: ClassVar[EventKind] = EventKind.UNLOADING_COMPLETED
    assigned_load_id: Optional[str] = None


@dataclass(frozen=True)
class SimulationReset:
    KIND: ClassVar[EventKind] = EventKind.SIMULATION_RESET
    generation: int


@dataclass(frozen=True)
class SimulationEvent:
    """
    One structured event record.

    Build with SimulationEvent.of(payload, ...): kind and level are taken
    from the payload class so they can never disagree with it.
    """
    kind: EventKind
    payload: Any
    level: EventLevel = EventLevel.INFO
    journey_id: Optional[str] = None
    generation: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def of(
        cls,
        payload: Any,
        *,
        journey_id: Optional[str] = None,
        generation: int = 0,
        extra: Optional[Dict[str, Any]] = None,
    ) -> SimulationEvent:
        return cls(
            kind=payload.KIND,
            payload=payload,
            level=getattr(payload, "LEVEL", EventLevel.INFO),
            journey_id=journey_id,
            generation=generation,
            extra=dict(extra or {}),
        )

    def to_record(self) -> Dict[str, Any]:
        details = asdict(self.payload)
        for key, value in details.items():
            if isinstance(value, tuple):
                details[key] = list(value)
        return {
            "kind": self.kind.value,
            "level": self.level.value,
            "timestamp": self.timestamp.isoformat(),
            "journey_id": self.journey_id,
            "generation": self.generation,
            "details": details,
            "extra": dict(self.extra),
        }

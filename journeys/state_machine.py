from typing import Dict, FrozenSet

from journeys.models import JourneyStatus


class JourneyStateException(Exception):
    """Raised when an invalid journey status transition is attempted."""
    pass


_ALLOWED: Dict[JourneyStatus, FrozenSet[JourneyStatus]] = {
    JourneyStatus.NOT_STARTED: frozenset({JourneyStatus.IN_TRANSIT}),
    JourneyStatus.IN_TRANSIT: frozenset({
        JourneyStatus.STOPPAGE,
        JourneyStatus.NEAR_DESTINATION,
        JourneyStatus.AT_RISK,
        JourneyStatus.UNLOADING,
    }),
    JourneyStatus.STOPPAGE: frozenset({
        JourneyStatus.IN_TRANSIT,
        JourneyStatus.NEAR_DESTINATION,
        JourneyStatus.AT_RISK,
    }),
    JourneyStatus.NEAR_DESTINATION: frozenset({
        JourneyStatus.STOPPAGE,
        JourneyStatus.AT_RISK,
        JourneyStatus.UNLOADING,
    }),
    JourneyStatus.AT_RISK: frozenset({
        JourneyStatus.IN_TRANSIT,
        JourneyStatus.STOPPAGE,
        JourneyStatus.NEAR_DESTINATION,
        JourneyStatus.UNLOADING,
    }),
    JourneyStatus.UNLOADING: frozenset({JourneyStatus.COMPLETED}),
    # a completed journey with an assigned load rolls onto the next leg
    JourneyStatus.COMPLETED: frozenset({JourneyStatus.IN_TRANSIT}),
}


def can_transition(current: JourneyStatus, target: JourneyStatus) -> bool:
    if target == current or target == JourneyStatus.NOT_STARTED:
        return True
    return target in _ALLOWED[current]


def transition_status(current: JourneyStatus, target: JourneyStatus) -> JourneyStatus:
    """
    Validate a status change and return the new status.

    Staying in the same status is a no-op, and any status may go back to
    NOT_STARTED (explicit simulation reset). Everything else must be listed
    in the transition table.
    """
    if not can_transition(current, target):
        raise JourneyStateException(f"Cannot transition journey from {current.value} to {target.value}")
    return target


def resume_status(geofence_entered: bool) -> JourneyStatus:
    """Status a moving truck falls back to once a stoppage or alert clears."""
    return JourneyStatus.NEAR_DESTINATION if geofence_entered else JourneyStatus.IN_TRANSIT

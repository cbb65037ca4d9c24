from .models import Journey, JourneyStatus
from .state_machine import JourneyStateException, can_transition, resume_status, transition_status

__all__ = [
    "Journey",
    "JourneyStatus",
    "JourneyStateException",
    "can_transition",
    "resume_status",
    "transition_status",
]

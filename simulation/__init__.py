#Marks simulation as a package.
#Re-exports the run lifecycle, the pure tick, config, models and events.

from .models import SimulationState, Stoppage
from .policy import SimulationConfig, default_config, realtime_config
from .stoppages import check_for_stoppage, countdown_stoppage, generate_stoppages
from .events import EventKind, EventLevel, SimulationEvent
from .engine import TickResult, initial_state, tick
from .runner import SimulationRun
from .scheduler import TickScheduler

__all__ = [
    "SimulationState",
    "Stoppage",
    "SimulationConfig",
    "default_config",
    "realtime_config",
    "check_for_stoppage",
    "countdown_stoppage",
    "generate_stoppages",
    "EventKind",
    "EventLevel",
    "SimulationEvent",
    "TickResult",
    "initial_state",
    "tick",
    "SimulationRun",
    "TickScheduler",
]

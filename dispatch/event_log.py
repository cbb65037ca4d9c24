# event_log.py
# Keeps the structured simulation events for a dispatcher session.
# In memory always; optionally appended to a JSON-lines file.

import json
import logging
import os
from typing import Iterable, List, Optional

from simulation.events import EventKind, EventLevel, SimulationEvent

logger = logging.getLogger(__name__)

_LEVELS = {
    EventLevel.INFO: logging.INFO,
    EventLevel.WARNING: logging.WARNING,
    EventLevel.ERROR: logging.ERROR,
}


class EventLog:
    """
    Ordered record of SimulationEvents.

    Args:
        filepath: Optional .jsonl path. Each recorded event is appended as one line.
    """

    def __init__(self, filepath: Optional[str] = None) -> None:
        self.filepath = filepath
        self._events: List[SimulationEvent] = []
        if filepath:
            directory = os.path.dirname(filepath)
            if directory:
                os.makedirs(directory, exist_ok=True)

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self):
        return iter(self._events)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record(self, event: SimulationEvent) -> SimulationEvent:
        self._events.append(event)
        logger.log(_LEVELS[event.level], f"[{event.journey_id}] {event.kind.value}: {event.payload}")
        if self.filepath:
            self._append(event)
        return event

    def extend(self, events: Iterable[SimulationEvent]) -> None:
        for event in events:
            self.record(event)

    def _append(self, event: SimulationEvent) -> None:
        try:
            with open(self.filepath, "a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_record(), ensure_ascii=False) + "\n")
        except IOError as e:
            logger.error(f"Failed to write event log: {e}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def events(self, journey_id: Optional[str] = None) -> List[SimulationEvent]:
        if journey_id is None:
            return list(self._events)
        return [e for e in self._events if e.journey_id == journey_id]

    def of_kind(self, kind: EventKind, journey_id: Optional[str] = None) -> List[SimulationEvent]:
        return [e for e in self.events(journey_id) if e.kind == kind]

    def last(self, kind: Optional[EventKind] = None) -> Optional[SimulationEvent]:
        for event in reversed(self._events):
            if kind is None or event.kind == kind:
                return event
        return None

    def clear(self) -> None:
        self._events.clear()


def read_event_log(filepath: str) -> List[dict]:
    """Load records previously appended by EventLog. Bad lines are skipped."""
    records = []
    try:
        with open(filepath, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(json.loads(line))
                except ValueError as e:
                    logger.warning(f"Skipping bad event line in {filepath}: {e}")
    except IOError as e:
        logger.error(f"Failed to read event log {filepath}: {e}")
    return records

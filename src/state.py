"""
Best-effort tracking of machine lifecycle state and progress.

The tracked state only serves external status queries. The resize workflow
never reads it back; it always re-polls the provider.
"""

import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from models import MachineState


@dataclass
class ProgressEvent:
    machine_id: str
    message: str
    percentage: int
    state: MachineState
    timestamp: float


class MachineStateTracker:
    """Thread-safe in-memory store of per-machine state and progress events."""

    def __init__(self, max_events: int = 100):
        self._lock = threading.Lock()
        self._states: Dict[str, MachineState] = {}
        self._events: Dict[str, List[ProgressEvent]] = {}
        self.max_events = max_events

    def update_state(self, machine_id: str, state: MachineState) -> None:
        with self._lock:
            self._states[machine_id] = state

    def get_state(self, machine_id: str) -> MachineState:
        with self._lock:
            return self._states.get(machine_id, MachineState.UNKNOWN)

    def push(
        self,
        machine_id: str,
        message: str,
        percentage: int,
        state: Optional[MachineState] = None,
    ) -> ProgressEvent:
        """Record a progress event, optionally moving the machine to a new state."""
        with self._lock:
            if state is not None:
                self._states[machine_id] = state
            event = ProgressEvent(
                machine_id=machine_id,
                message=message,
                percentage=percentage,
                state=self._states.get(machine_id, MachineState.UNKNOWN),
                timestamp=time.time(),
            )
            events = self._events.setdefault(machine_id, [])
            events.append(event)
            del events[: -self.max_events]
            return event

    def events(self, machine_id: str) -> List[ProgressEvent]:
        with self._lock:
            return list(self._events.get(machine_id, []))

    def last_event(self, machine_id: str) -> Optional[ProgressEvent]:
        with self._lock:
            events = self._events.get(machine_id)
            return events[-1] if events else None

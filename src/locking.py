"""
Per-machine exclusion locks.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator

from errors import MachineBusyError

logger = logging.getLogger(__name__)


class MachineLocks:
    """
    One lock per machine id. Independent machines never block each other.

    A machine's entry lives only while some caller holds or waits for its
    lock, so the map does not grow with every machine ever resized.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, machine_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(machine_id)
            if lock is None:
                lock = self._locks[machine_id] = threading.Lock()
            self._users[machine_id] = self._users.get(machine_id, 0) + 1
            return lock

    def _checkin(self, machine_id: str) -> None:
        with self._guard:
            users = self._users[machine_id] - 1
            if users:
                self._users[machine_id] = users
            else:
                del self._users[machine_id]
                del self._locks[machine_id]

    def is_locked(self, machine_id: str) -> bool:
        with self._guard:
            lock = self._locks.get(machine_id)
        return lock is not None and lock.locked()

    @contextmanager
    def hold(self, machine_id: str, blocking: bool = False) -> Iterator[None]:
        """
        Hold the machine's lock for the duration of the block.

        Args:
            machine_id: Machine to lock
            blocking: Wait for the lock instead of failing fast

        Raises:
            MachineBusyError: If the lock is held and blocking is False
        """
        lock = self._checkout(machine_id)
        try:
            if not lock.acquire(blocking=blocking):
                raise MachineBusyError(
                    f"Machine {machine_id} is busy with another operation"
                )
            logger.debug(f"Acquired lock for machine {machine_id}")
            try:
                yield
            finally:
                lock.release()
                logger.debug(f"Released lock for machine {machine_id}")
        finally:
            self._checkin(machine_id)

"""Network reachability tracking.

``NetworkMonitor`` holds the latest connectivity status reported by the
platform and notifies listeners only when the status actually changes.
"""

import logging
import threading
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class ConnectivityStatus(str, Enum):
    SATISFIED = "satisfied"
    UNSATISFIED = "unsatisfied"


Listener = Callable[[ConnectivityStatus, ConnectivityStatus], None]


class NetworkMonitor:
    """Connectivity state with transition listeners.

    Listeners are called with ``(previous, current)`` outside the lock.
    """

    def __init__(self, status: ConnectivityStatus = ConnectivityStatus.SATISFIED):
        self._status = ConnectivityStatus(status)
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    @property
    def status(self) -> ConnectivityStatus:
        with self._lock:
            return self._status

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectivityStatus.SATISFIED

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def set_status(self, status: ConnectivityStatus) -> None:
        """Report a new status; listeners hear about transitions only."""
        status = ConnectivityStatus(status)
        with self._lock:
            previous = self._status
            if previous == status:
                return
            self._status = status
            listeners = list(self._listeners)

        logger.info("Network %s -> %s", previous.value, status.value)
        for listener in listeners:
            listener(previous, status)

    def set_connected(self, connected: bool) -> None:
        self.set_status(
            ConnectivityStatus.SATISFIED if connected else ConnectivityStatus.UNSATISFIED
        )

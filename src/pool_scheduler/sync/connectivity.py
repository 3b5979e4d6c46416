"""
Edge-triggered online/offline signal.
"""

import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)

Listener = Callable[[bool], None]


class ConnectivitySignal:
    """Observable connectivity flag; listeners only hear actual transitions."""

    def __init__(self, online: bool = False):
        self.online = online
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener):
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_online(self, online: bool) -> bool:
        """Update the flag; returns True when the value changed."""
        if online == self.online:
            return False
        self.online = online
        logger.info("Connectivity: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            listener(online)
        return True


def poll(
    signal: ConnectivitySignal,
    is_online: Callable[[], bool],
    interval: float,
    iterations: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """Feed ``signal`` from ``is_online`` every ``interval`` seconds.

    Runs forever unless ``iterations`` is given.
    """
    count = 0
    while iterations is None or count < iterations:
        signal.set_online(is_online())
        count += 1
        if iterations is None or count < iterations:
            sleep(interval)

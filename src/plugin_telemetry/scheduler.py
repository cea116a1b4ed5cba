"""Periodic task scheduling for queue flushes.

Hosts with their own scheduler (cron, a job queue, an event loop) implement
the Scheduler protocol. ThreadingScheduler covers plain Python processes.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Scheduler(Protocol):
    """Registers named periodic callbacks."""

    def register(self, name: str, interval_seconds: float, callback: Callable[[], None]) -> None: ...

    def unregister(self, name: str) -> None: ...

    def is_registered(self, name: str) -> bool: ...


class ThreadingScheduler:
    """Runs each callback on a daemon timer thread, re-armed after every run."""

    def __init__(self) -> None:
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def register(self, name: str, interval_seconds: float, callback: Callable[[], None]) -> None:
        """Register ``callback`` under ``name``. An existing registration is kept."""
        with self._lock:
            if name in self._timers:
                return
            self._arm(name, interval_seconds, callback)

    def _arm(self, name: str, interval_seconds: float, callback: Callable[[], None]) -> None:
        timer = threading.Timer(interval_seconds, self._run, args=(name, interval_seconds, callback))
        timer.daemon = True
        self._timers[name] = timer
        timer.start()

    def _run(self, name: str, interval_seconds: float, callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:
            logger.exception("Scheduled task %r failed", name)

        with self._lock:
            # Unregistered, or replaced by a new registration, while running
            if self._timers.get(name) is not threading.current_thread():
                return
            self._arm(name, interval_seconds, callback)

    def unregister(self, name: str) -> None:
        with self._lock:
            timer = self._timers.pop(name, None)
        if timer is not None:
            timer.cancel()

    def is_registered(self, name: str) -> bool:
        with self._lock:
            return name in self._timers

    def shutdown(self) -> None:
        """Cancel every registered callback."""
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

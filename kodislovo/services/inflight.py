"""
Guard against double-submitting idempotence-sensitive requests
(submit, reset, void) while an identical one is still running.
"""

import threading
from contextlib import contextmanager

from kodislovo.errors import RequestInFlight


class InFlightGuard:
    def __init__(self):
        self._active = set()
        self._lock = threading.Lock()

    @contextmanager
    def hold(self, name):
        with self._lock:
            if name in self._active:
                raise RequestInFlight(f"'{name}' is already in progress, wait for it to finish.")
            self._active.add(name)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(name)

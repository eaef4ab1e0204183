"""
Deadline Controller
===================
Remaining time is always recomputed from the attempt's fixed ``startedAt``
and the configured limit, never decremented from a counter, so it stays
correct across reloads and suspends.

A background ticker re-evaluates the deadline every ``interval`` seconds
and triggers ``finish(auto=True)`` once time is up.
"""

import logging
import math
import threading
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

NO_LIMIT_TEXT = "no limit"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso(dt: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a 'Z' suffix."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value):
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def remaining_seconds(time_limit_minutes, started_at, now):
    """limit*60 - floor(elapsed seconds); None when no limit is configured."""
    if not time_limit_minutes or time_limit_minutes <= 0:
        return None
    started = parse_iso(started_at)
    if started is None:
        return None
    elapsed_ms = (parse_iso(now) - started).total_seconds() * 1000
    return int(round(time_limit_minutes * 60)) - math.floor(elapsed_ms / 1000)


def format_remaining(seconds) -> str:
    """HH:MM:SS clamped at zero, or 'no limit'."""
    if seconds is None:
        return NO_LIMIT_TEXT
    s = max(0, int(math.floor(seconds)))
    return f"{s // 3600:02d}:{(s % 3600) // 60:02d}:{s % 60:02d}"


class DeadlineController:
    """Watches one attempt's deadline on behalf of a SessionController."""

    def __init__(self, controller, time_limit_minutes, clock=utc_now, interval=0.25):
        self.controller = controller
        self.time_limit_minutes = time_limit_minutes
        self.clock = clock
        self.interval = interval
        self._stop = threading.Event()
        self._thread = None

    @property
    def has_limit(self) -> bool:
        return bool(self.time_limit_minutes and self.time_limit_minutes > 0)

    def remaining(self, now=None):
        return remaining_seconds(self.time_limit_minutes, self.controller.attempt.started_at,
                                 now or self.clock())

    def tick(self, now=None) -> bool:
        """Re-evaluate the deadline; returns True if this tick finished the attempt."""
        left = self.remaining(now)
        if left is None or left > 0:
            return False
        if not self.controller.is_in_progress():
            return False
        logger.info("Time limit reached for %s", self.controller.key)
        return self.controller.finish(auto=True)

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.tick()
            except Exception:
                logger.exception("Deadline tick failed for %s", self.controller.key)
            if not self.controller.is_in_progress():
                break

    def start(self):
        """Start the background ticker; no-op without a limit."""
        self.stop()
        if not self.has_limit:
            return
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name=f"deadline-{self.controller.key}", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

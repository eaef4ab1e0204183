"""
Assessment Session
==================
The Attempt record and the state machine that owns it.

States: NOT_STARTED -> IN_PROGRESS -> FINISHED. FINISHED is terminal except
through ``reset()``, which destroys the stored attempt and creates a fresh one.
Every mutation is persisted to the Session Store immediately.
"""

import logging
import threading
from enum import Enum
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from kodislovo.errors import AttemptFinishedError, ValidationError
from kodislovo.services.deadline import DeadlineController, format_remaining, iso, utc_now
from kodislovo.services.grading_service import grade_attempt, grade_label
from kodislovo.services.session_store import session_key

logger = logging.getLogger(__name__)


class Status(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    FINISHED = "FINISHED"


class Attempt(BaseModel):
    """One student's run through a variant, as persisted."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    subject: str
    variant_id: str
    variant_file: Optional[str] = None
    student_name: str = ""
    student_class: str = ""
    answers: Dict[str, str] = Field(default_factory=dict)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    status: Status = Status.NOT_STARTED
    current_task_index: int = 0
    submitted_at: Optional[str] = None
    submission_key: Optional[str] = None

    @property
    def is_finished(self) -> bool:
        return self.status == Status.FINISHED

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_record(cls, record: dict) -> "Attempt":
        return cls.model_validate(record)


class SessionController:
    """
    Owns the lifecycle of a single attempt for (subject, variant).

    Composes the Session Store (persistence), the Deadline Controller
    (auto-finish) and the Grader (live score preview).
    """

    def __init__(self, store, variant, subject, time_limit_minutes=None, clock=utc_now,
                 tick_interval=0.25, thresholds=None):
        self.store = store
        self.variant = variant
        self.subject = subject
        self.time_limit_minutes = time_limit_minutes
        self.clock = clock
        self.tick_interval = tick_interval
        self.thresholds = thresholds
        self.attempt: Optional[Attempt] = None
        self.deadline: Optional[DeadlineController] = None
        self.finish_listeners: List[Callable] = []
        self._lock = threading.RLock()

    @property
    def key(self) -> str:
        return session_key(self.subject, self.variant.id)

    def is_in_progress(self) -> bool:
        return self.attempt is not None and self.attempt.status == Status.IN_PROGRESS

    # ---- persistence -------------------------------------------------------

    def _persist(self):
        self.store.save(self.attempt.to_record())

    def _new_attempt(self) -> Attempt:
        return Attempt(
            subject=self.subject,
            variant_id=self.variant.id,
            variant_file=self.variant.file,
            started_at=iso(self.clock()),
            status=Status.IN_PROGRESS,
        )

    def _restart_deadline(self):
        if self.deadline is not None:
            self.deadline.stop()
        self.deadline = DeadlineController(self, self.time_limit_minutes, clock=self.clock,
                                           interval=self.tick_interval)
        if self.is_in_progress():
            self.deadline.start()

    # ---- transitions -------------------------------------------------------

    def open(self) -> Attempt:
        """Create a new attempt, or resume the stored one verbatim."""
        with self._lock:
            record = self.store.load(self.subject, self.variant.id)
            if record is None:
                self.attempt = self._new_attempt()
                self._persist()
                logger.info("Created attempt %s", self.key)
            else:
                self.attempt = Attempt.from_record(record)
                logger.info("Resumed attempt %s (%s)", self.key, self.attempt.status.value)
            attempt = self.attempt
        # not under the lock: the old ticker may be blocked on it
        self._restart_deadline()
        return attempt

    def _check_deadline(self):
        # the background ticker may not have run yet
        if self.deadline is not None:
            self.deadline.tick()

    def answer(self, task_id, raw_text):
        with self._lock:
            self._check_deadline()
            if self.attempt.is_finished:
                raise AttemptFinishedError("The control is finished; answers can no longer change.")
            tid = str(task_id)
            if tid not in self.variant.task_ids():
                raise ValidationError(f"Unknown task id: {task_id}")
            self.attempt.answers[tid] = "" if raw_text is None else str(raw_text)
            self._persist()

    def set_student(self, name=None, student_class=None):
        with self._lock:
            self._check_deadline()
            if self.attempt.is_finished:
                raise AttemptFinishedError("The control is finished; student details are locked.")
            if name is not None:
                self.attempt.student_name = str(name).strip()
            if student_class is not None:
                self.attempt.student_class = str(student_class).strip()
            self._persist()

    def navigate(self, delta) -> int:
        """Move the cursor by delta, clamped into the task range. Allowed after finish."""
        with self._lock:
            return self._move_to(self.attempt.current_task_index + int(delta))

    def go_to(self, index) -> int:
        with self._lock:
            return self._move_to(int(index))

    def _move_to(self, index) -> int:
        last = max(0, len(self.variant.tasks) - 1)
        clamped = max(0, min(index, last))
        if clamped != self.attempt.current_task_index:
            self.attempt.current_task_index = clamped
            self._persist()
        return clamped

    def finish(self, auto=False) -> bool:
        """Finish the attempt. Returns False (no-op) if it is already finished."""
        with self._lock:
            if self.attempt.is_finished:
                return False
            self.attempt.status = Status.FINISHED
            self.attempt.finished_at = iso(self.clock())
            self._persist()
            logger.info("Finished attempt %s (%s)", self.key, "auto" if auto else "manual")

        for listener in list(self.finish_listeners):
            listener(self, auto)
        return True

    def reset(self) -> Attempt:
        """Destroy the stored attempt and start a fresh one. Reset Workflow only."""
        if self.deadline is not None:
            self.deadline.stop()
        with self._lock:
            self.store.clear(self.subject, self.variant.id)
            self.attempt = None
            logger.info("Reset attempt %s", self.key)
        return self.open()

    def mark_submitted(self, submission_key=None):
        with self._lock:
            self.attempt.submitted_at = iso(self.clock())
            self.attempt.submission_key = submission_key
            self._persist()

    def close(self):
        if self.deadline is not None:
            self.deadline.stop()

    # ---- read side ---------------------------------------------------------

    def score(self) -> dict:
        summary = grade_attempt(self.variant.tasks, self.attempt.answers)
        summary["mark"] = grade_label(summary["percent"], self.variant.grading_thresholds or self.thresholds)
        return summary

    def remaining(self):
        if self.deadline is None:
            return None
        return self.deadline.remaining()

    def current_task(self):
        if not self.variant.tasks:
            return None
        return self.variant.tasks[self.attempt.current_task_index]

    def snapshot(self) -> dict:
        """Everything the student UI needs to render the current screen."""
        remaining = self.remaining()
        task = self.current_task()
        block = self.variant.text_block_for(task.id) if task is not None else None
        return {
            "key": self.key,
            "attempt": self.attempt.to_record(),
            "variant": {
                "id": self.variant.id,
                "title": self.variant.title,
                "subtitle": self.variant.subtitle,
                "taskCount": len(self.variant.tasks),
            },
            "task": {
                "id": task.id,
                "text": task.text,
                "hint": task.hint,
                "points": task.points,
                "answer": self.attempt.answers.get(str(task.id), ""),
            } if task is not None else None,
            "textBlock": block.model_dump() if block is not None else None,
            "remainingSeconds": remaining,
            "timer": format_remaining(remaining),
            "score": self.score(),
        }

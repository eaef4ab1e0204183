"""
Answer-Key Resolution
=====================
Turns loosely-shaped external JSON (uploaded answer keys, variant documents,
result records from older clients) into typed, validated models before any
grading logic touches it.

Key sources are tried in a fixed priority order; the first non-empty
result wins:

    1. key file {"answers": {...}}
    2. key file {"key": {...}}
    3. key file {"ANSWER_KEY": {"answers": {...}}}
    4. key file as a flat {taskId: accepted} mapping
    5. key file tasks[] with per-task answer fields
    6. variant document tasks[] with per-task answer fields
    7. variant document {"answers": {...}}
    8. the result payload's own embedded answerKey snapshot
"""

import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from kodislovo.errors import KeyResolutionError
from kodislovo.services.variants import Task

logger = logging.getLogger(__name__)

TASK_ID_FIELDS = ("id", "qid", "key", "taskId")
TASK_ANSWER_FIELDS = ("acceptedAnswers", "answers", "answer", "correct", "right", "solution")
STUDENT_VALUE_FIELDS = ("answer", "value", "response", "selected", "choice")


def _is_scalar(value) -> bool:
    return isinstance(value, (str, int, float)) and not isinstance(value, bool)


def _accepted_list(value) -> Optional[List[str]]:
    """Scalar or list of scalars -> list of strings; anything else -> None."""
    if _is_scalar(value):
        return [str(value)]
    if isinstance(value, (list, tuple)) and value and all(_is_scalar(v) for v in value):
        return [str(v) for v in value]
    return None


def _sort_key(task_id):
    return int(task_id)


class AnswerKey(BaseModel):
    """Validated answer key: numeric task id -> accepted answers, plus point values."""

    answers: Dict[str, List[str]]
    points: Dict[str, float] = Field(default_factory=dict)
    title: str = ""
    source: str = ""

    def task_ids(self) -> List[str]:
        return sorted(self.answers, key=_sort_key)

    def tasks(self) -> List[Task]:
        """Synthetic Task list for the Grader, ordered numerically by id."""
        tasks = []
        for tid in self.task_ids():
            points = self.points.get(tid, 1)
            tasks.append(Task(
                id=int(tid),
                points=int(points) if float(points).is_integer() else points,
                accepted_answers=self.answers[tid],
            ))
        return tasks


class StudentAnswers(BaseModel):
    fio: str = ""
    student_class: str = ""
    answers: Dict[str, str] = Field(default_factory=dict)


def _mapping_key(mapping, points=None, title="", source="") -> Optional[AnswerKey]:
    if not isinstance(mapping, dict):
        return None
    answers = {}
    for tid, value in mapping.items():
        accepted = _accepted_list(value)
        if accepted is not None and str(tid).strip().isdigit():
            answers[str(tid).strip()] = accepted
    if not answers:
        return None
    return AnswerKey(answers=answers, points=_points_map(points), title=title, source=source)


def _points_map(points) -> Dict[str, float]:
    if not isinstance(points, dict):
        return {}
    result = {}
    for tid, value in points.items():
        try:
            result[str(tid)] = float(value)
        except (TypeError, ValueError):
            continue
    return result


def _tasks_key(doc, title="", source="") -> Optional[AnswerKey]:
    if not isinstance(doc, dict):
        return None
    tasks = doc.get("tasks") or doc.get("items") or doc.get("questions")
    if not isinstance(tasks, list):
        return None

    answers, points = {}, {}
    for task in tasks:
        if not isinstance(task, dict):
            continue
        tid = next((task[f] for f in TASK_ID_FIELDS if task.get(f) is not None), None)
        if tid is None or not str(tid).strip().isdigit():
            continue
        accepted = next((_accepted_list(task[f]) for f in TASK_ANSWER_FIELDS
                         if task.get(f) is not None and _accepted_list(task[f]) is not None), None)
        if accepted is None:
            continue
        answers[str(tid)] = accepted
        if task.get("points") is not None:
            points[str(tid)] = task["points"]
    if not answers:
        return None
    return AnswerKey(answers=answers, points=_points_map(points), title=title, source=source)


def _title_of(doc) -> str:
    if not isinstance(doc, dict):
        return ""
    meta = doc.get("meta") if isinstance(doc.get("meta"), dict) else {}
    return str(doc.get("title") or meta.get("title") or doc.get("set") or "")


def _flat_key(doc, title="") -> Optional[AnswerKey]:
    """Flat {taskId: accepted} mapping; only numeric ids count, metadata keys are ignored."""
    if not isinstance(doc, dict):
        return None
    numeric = {k: v for k, v in doc.items() if str(k).strip().isdigit()}
    return _mapping_key(numeric, title=title, source="flat")


def resolve_answer_key(key_source=None, variant_doc=None, payload=None) -> AnswerKey:
    """Resolve an answer key; raises KeyResolutionError if no source yields one."""
    title = _title_of(key_source) or _title_of(variant_doc)
    points = key_source.get("points") if isinstance(key_source, dict) else None
    answer_key_block = key_source.get("ANSWER_KEY") if isinstance(key_source, dict) else None
    snapshot = payload.get("answerKey") if isinstance(payload, dict) else None

    chain = (
        lambda: _mapping_key(key_source.get("answers"), points, title, "answers")
        if isinstance(key_source, dict) else None,
        lambda: _mapping_key(key_source.get("key"), points, title, "key")
        if isinstance(key_source, dict) else None,
        lambda: _mapping_key(answer_key_block.get("answers"), points, title, "ANSWER_KEY")
        if isinstance(answer_key_block, dict) else None,
        lambda: _flat_key(key_source, title),
        lambda: _tasks_key(key_source, title, "key-tasks"),
        lambda: _tasks_key(variant_doc, title, "variant-tasks"),
        lambda: _mapping_key(variant_doc.get("answers"), None, title, "variant-answers")
        if isinstance(variant_doc, dict) else None,
        lambda: _tasks_key(snapshot, title, "payload-snapshot"),
    )
    for resolver in chain:
        key = resolver()
        if key is not None:
            logger.info("Resolved answer key from %s (%d tasks)", key.source, len(key.answers))
            return key

    raise KeyResolutionError(
        "No answer key found. Upload a key JSON or add answers to the variant JSON (tasks[].answer/answers)."
    )


def _student_value(value) -> str:
    if isinstance(value, dict):
        value = value.get("value", value.get("answer", ""))
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def extract_student_answers(payload) -> StudentAnswers:
    """Pull identity and a {taskId: raw answer} map out of a result record."""
    if not isinstance(payload, dict):
        return StudentAnswers()

    identity = payload.get("identity") if isinstance(payload.get("identity"), dict) else {}
    student = payload.get("student") if isinstance(payload.get("student"), dict) else {}
    fio = identity.get("fio") or student.get("name") or payload.get("fio") or ""
    cls = identity.get("cls") or student.get("class") or payload.get("class") or payload.get("cls") or ""

    answers = {}
    for field in ("answers", "userAnswers", "responses"):
        value = payload.get(field)
        if isinstance(value, dict):
            answers = {str(k): _student_value(v) for k, v in value.items()}
            break
        if isinstance(value, list):
            answers = _answers_from_list(value)
            if answers:
                break

    if not answers:
        for field in ("items", "tasks"):
            if isinstance(payload.get(field), list):
                answers = _answers_from_list(payload[field])
                if answers:
                    break

    return StudentAnswers(fio=str(fio), student_class=str(cls), answers=answers)


def _answers_from_list(items) -> Dict[str, str]:
    answers = {}
    for item in items:
        if not isinstance(item, dict):
            continue
        tid = next((item[f] for f in TASK_ID_FIELDS if item.get(f) is not None), None)
        if tid is None:
            continue
        raw = next((item[f] for f in STUDENT_VALUE_FIELDS if f in item), "")
        answers[str(tid)] = _student_value(raw)
    return answers

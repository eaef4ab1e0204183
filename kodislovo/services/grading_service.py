"""
Grading Service
===============
Answer normalization and exact-match short-answer grading.

The same ``normalize`` is used by live student-side scoring and by the
instructor autocheck, so both sides always agree on what a match is.
"""

import math
import re

from kodislovo.config import DEFAULT_GRADE_THRESHOLDS

_WHITESPACE_RE = re.compile(r'\s+')


def normalize(raw) -> str:
    """Canonicalize an answer for comparison.

    None -> "", trim, lower-case, fold "ё" to "е", collapse whitespace runs
    to a single space, trim again.
    """
    if raw is None:
        return ""
    s = str(raw).strip().lower()
    s = s.replace("ё", "е")
    s = _WHITESPACE_RE.sub(" ", s)
    return s.strip()


def round_percent(earned, maximum) -> int:
    """Percentage rounded half up; 0 when there is nothing to score."""
    if not maximum or maximum <= 0:
        return 0
    return int(math.floor(100.0 * earned / maximum + 0.5))


def accepted_set(accepted_answers):
    """Normalized accepted-answer set; empty normalized entries are dropped."""
    if accepted_answers is None:
        return set()
    if isinstance(accepted_answers, (str, int, float)):
        accepted_answers = [accepted_answers]
    return {n for n in (normalize(a) for a in accepted_answers) if n}


def answer_matches(raw_answer, accepted_answers) -> bool:
    """True iff the normalized answer is non-empty and in the accepted set."""
    answer = normalize(raw_answer)
    if not answer:
        return False
    return answer in accepted_set(accepted_answers)


def grade_task(task, raw_answer) -> dict:
    """Grade one task.

    Returns {"correct": bool, "earned": points or 0}.
    """
    correct = answer_matches(raw_answer, task.accepted_answers)
    return {"correct": correct, "earned": task.points if correct else 0}


def grade_attempt(tasks, answers) -> dict:
    """
    Grade an attempt over an ordered task list.

    Tasks without a recorded answer still count toward ``max``.

    Returns dict with:
    - earned, max, percent
    - perTask: one entry per task, in task order
    """
    answers = answers or {}
    earned = 0
    maximum = 0
    per_task = []

    for task in tasks:
        maximum += task.points
        student_raw = answers.get(str(task.id), "")
        if student_raw is None:
            student_raw = ""
        result = grade_task(task, student_raw)
        earned += result["earned"]

        per_task.append({
            "id": task.id,
            "earned": result["earned"],
            "max": task.points,
            "correct": result["correct"],
            "studentRaw": str(student_raw).strip(),
            "accepted": list(task.accepted_answers),
        })

    return {
        "earned": earned,
        "max": maximum,
        "percent": round_percent(earned, maximum),
        "perTask": per_task,
    }


def grade_label(percent, thresholds=None):
    """Convert a percentage to a grade label.

    Thresholds are sorted descending; the first label whose minimum is
    <= percent wins. Equal thresholds keep their mapping order. When no
    threshold matches, the label with the lowest threshold is returned.
    An empty mapping yields None.
    """
    if thresholds is None:
        thresholds = DEFAULT_GRADE_THRESHOLDS
    if not thresholds:
        return None

    ordered = sorted(thresholds.items(), key=lambda item: -float(item[1]))
    for label, minimum in ordered:
        if float(minimum) <= percent:
            return label
    return ordered[-1][0]

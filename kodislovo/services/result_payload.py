"""
Result Payload Builder
======================
Serializes a finished attempt into the submission document sent to the
remote service. The payload embeds the answer-key snapshot the student was
graded against, so it stays regradable after the variant is edited.
"""

import copy

from kodislovo import __version__
from kodislovo.config import RESULT_SCHEMA
from kodislovo.services.deadline import iso, utc_now


def answer_key_snapshot(variant) -> dict:
    return {
        "variantId": variant.id,
        "tasks": [
            {"id": t.id, "points": t.points, "acceptedAnswers": list(t.accepted_answers)}
            for t in variant.tasks
        ],
    }


def build_result_payload(attempt, variant, grading, subject_title=None, created_at=None) -> dict:
    """
    Build the canonical submission document.

    Args:
        attempt: the Attempt being submitted
        variant: the Variant it was taken on
        grading: output of grade_attempt (optionally with "mark")
        subject_title: display name of the subject, defaults to the subject id
        created_at: timestamp override (defaults to now)
    """
    return {
        "schema": RESULT_SCHEMA,
        "createdAt": created_at or iso(utc_now()),
        "startedAt": attempt.started_at,
        "finishedAt": attempt.finished_at,
        "isFinished": attempt.is_finished,
        "status": attempt.status.value,
        "subject": attempt.subject,
        "subjectTitle": subject_title or attempt.subject,
        "variant": {
            "id": variant.id,
            "file": variant.file,
            "title": variant.title,
            "subtitle": variant.subtitle,
        },
        "grading": {
            "maxPoints": grading["max"],
            "earnedPoints": grading["earned"],
            "percent": grading["percent"],
            "mark": grading.get("mark"),
        },
        "student": {
            "name": attempt.student_name,
            "class": attempt.student_class,
        },
        "answers": dict(attempt.answers),
        "perTask": copy.deepcopy(grading["perTask"]),
        "answerKey": answer_key_snapshot(variant),
        "meta": copy.deepcopy(variant.meta),
        "client": f"kodislovo/{__version__}",
    }

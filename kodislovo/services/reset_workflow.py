"""
Reset Workflow
==============
One-time reset codes that authorize clearing a finished attempt.

Instructor side mints a code bound to (subject, variant, class, student);
student side redeems it once. Single use and expiry are enforced by the
remote service; the client only surfaces the result.
"""

import json
import logging
import os
import threading
from urllib.parse import urlencode

from kodislovo.errors import RemoteError, ValidationError
from kodislovo.services.deadline import iso, utc_now

logger = logging.getLogger(__name__)

MAX_HISTORY = 50


def _clean(value) -> str:
    return str(value or "").strip()


def control_link(site_url, subject, variant, code) -> str:
    """Link that opens the control page with the reset code prefilled."""
    base = (site_url or "").rstrip('/')
    query = urlencode({"subject": subject, "variant": variant, "reset": code})
    return f"{base}/control/control.html?{query}"


class ResetHistory:
    """Local journal of issued reset codes, newest first."""

    def __init__(self, path, limit=MAX_HISTORY):
        self.path = path
        self.limit = limit
        self._lock = threading.Lock()

    def entries(self):
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Reset history unreadable: %s", e)
            return []
        return data if isinstance(data, list) else []

    def add(self, entry: dict):
        with self._lock:
            items = [entry] + self.entries()
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(self.path, 'w', encoding='utf-8') as f:
                json.dump(items[:self.limit], f, ensure_ascii=False, indent=2)

    def clear(self):
        with self._lock:
            if os.path.exists(self.path):
                os.remove(self.path)


def request_reset(remote, subject, variant, student_class, fio, history=None, site_url="") -> dict:
    """
    Ask the remote service to mint a reset code for one student.

    All four scoping fields are mandatory: a code not bound to a student
    identity must never be issued.

    Returns dict with code, expiresAt, link and the scoping fields.
    """
    fields = {
        "subject": _clean(subject),
        "variant": _clean(variant),
        "class": _clean(student_class),
        "fio": _clean(fio),
    }
    missing = [name for name, value in fields.items() if not value]
    if missing:
        raise ValidationError(f"Fill in: {', '.join(missing)}")

    data = remote.reset_issue(fields["subject"], fields["variant"], fields["class"], fields["fio"])
    code = _clean(data.get("code") if isinstance(data, dict) else None)
    if not code:
        raise RemoteError("Reset service returned no code", body=data)

    entry = {
        **fields,
        "code": code,
        "expiresAt": data.get("expiresAt"),
        "key": data.get("key"),
        "createdAt": iso(utc_now()),
        "link": control_link(site_url, fields["subject"], fields["variant"], code),
    }
    if history is not None:
        history.add(entry)
    logger.info("Issued reset code for %s / %s / %s", fields["subject"], fields["variant"], fields["class"])
    return entry


def redeem_reset(remote, controller, code):
    """
    Redeem a reset code for the controller's attempt; on success reset it.

    Identity comes from the attempt itself, so a code only ever resets the
    attempt of the student it was issued for.
    """
    code = _clean(code)
    if not code:
        raise ValidationError("Enter the reset code.")
    attempt = controller.attempt
    fio = _clean(attempt.student_name)
    student_class = _clean(attempt.student_class)
    if not fio or not student_class:
        raise ValidationError("Fill in the student name and class to apply a reset code.")

    data = remote.reset_consume(controller.subject, controller.variant.id, student_class, fio, code)
    if isinstance(data, dict) and data.get("ok") is False:
        raise RemoteError(str(data.get("message") or data.get("error") or "Reset code rejected"), body=data)

    name, cls = attempt.student_name, attempt.student_class
    fresh = controller.reset()
    controller.set_student(name, cls)
    logger.info("Reset code redeemed for %s", controller.key)
    return fresh

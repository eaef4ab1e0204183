"""
Session Store
=============
Durable per-(subject, variant) attempt records, kept in a single JSON
document on disk. Single writer per device; the last write wins.

Record key: "{subject}:{variantId}". Each record carries a ``schema`` tag;
records written by older clients are migrated on read.
"""

import json
import logging
import os
import threading

from kodislovo.config import SESSION_SCHEMA
from kodislovo.services.deadline import iso, utc_now

logger = logging.getLogger(__name__)

LEGACY_SCHEMAS = ("kodislovo.control.v1",)


def session_key(subject, variant_id) -> str:
    return f"{subject}:{variant_id or 'variant'}"


def migrate_record(record: dict) -> dict:
    """Bring a stored record up to the current schema."""
    if record.get("schema") == SESSION_SCHEMA:
        return record
    if record.get("schema") not in LEGACY_SCHEMAS:
        logger.warning("Session record with unknown schema %r, migrating as legacy", record.get("schema"))

    migrated = dict(record)
    if "status" not in migrated:
        migrated["status"] = "FINISHED" if migrated.get("isFinished") else "IN_PROGRESS"
    student = migrated.pop("student", None) or {}
    migrated.setdefault("studentName", student.get("name", ""))
    migrated.setdefault("studentClass", student.get("class", ""))
    migrated.pop("isFinished", None)
    migrated["schema"] = SESSION_SCHEMA
    logger.info("Migrated session record %s:%s from %s",
                migrated.get("subject"), migrated.get("variantId"), record.get("schema"))
    return migrated


class SessionStore:
    """JSON-file key-value store of attempt records."""

    def __init__(self, path):
        self.path = path
        self._lock = threading.Lock()

    def _read_all(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except ValueError as e:
            self._set_aside(e)
            return {}
        except OSError as e:
            logger.warning("Session store unreadable (%s), starting empty: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            self._set_aside("top level is not an object")
            return {}
        return data

    def _set_aside(self, reason):
        """Move a damaged file to <path>.corrupt before it gets rewritten."""
        backup = self.path + ".corrupt"
        os.replace(self.path, backup)
        logger.warning("Session store %s is damaged (%s), moved to %s", self.path, reason, backup)

    def _write_all(self, data: dict):
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        tmp = self.path + ".tmp"
        with open(tmp, 'w', encoding='utf-8') as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp, self.path)

    def load(self, subject, variant_id):
        """Return the stored record for the pair, or None."""
        with self._lock:
            record = self._read_all().get(session_key(subject, variant_id))
        if not isinstance(record, dict):
            return None
        return migrate_record(record)

    def save(self, record: dict):
        key = session_key(record.get("subject"), record.get("variantId"))
        stored = dict(record)
        stored["schema"] = SESSION_SCHEMA
        stored["savedAt"] = iso(utc_now())
        with self._lock:
            data = self._read_all()
            data[key] = stored
            self._write_all(data)

    def clear(self, subject, variant_id):
        key = session_key(subject, variant_id)
        with self._lock:
            data = self._read_all()
            if data.pop(key, None) is not None:
                self._write_all(data)
                logger.info("Cleared session record %s", key)

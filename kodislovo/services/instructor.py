"""
Instructor Aggregator
=====================
Fetches attempt lists and records from the remote service, filters them
locally, and regrades them against a resolved answer key.

Batch policy: the answer key is resolved once per batch. When that fails,
each record resolves its own key, ending with the snapshot embedded in its
payload. A record that cannot be fetched or keyed becomes an error row and
the batch continues; a batch where no record yields a key is rejected.
"""

import logging
import statistics
import threading
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaError

from kodislovo.errors import KeyResolutionError, KodislovoError, ValidationError
from kodislovo.services.answer_keys import extract_student_answers, resolve_answer_key
from kodislovo.services.grading_service import grade_attempt, grade_label, normalize
from kodislovo.services.variants import normalize_variant_name

logger = logging.getLogger(__name__)


class SummaryRecord(BaseModel):
    """One row of the remote attempt list."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    key: str
    fio: str = ""
    student_class: str = Field("", validation_alias=AliasChoices("class", "cls", "student_class"))
    variant: str = ""
    created_at: str = Field("", validation_alias=AliasChoices("createdAt", "created_at"))
    percent: Optional[float] = None
    mark: Optional[str] = None
    voided: bool = False

    @field_validator("fio", "student_class", "variant", "created_at", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return "" if v is None else str(v)

    @field_validator("mark", mode="before")
    @classmethod
    def _mark_to_str(cls, v):
        return None if v is None or v == "" else str(v)

    @field_validator("percent", mode="before")
    @classmethod
    def _blank_percent(cls, v):
        return None if v == "" else v

    @field_validator("voided", mode="before")
    @classmethod
    def _voided_flag(cls, v):
        return bool(v)

    def haystack(self) -> str:
        return f"{self.fio} {self.student_class} {self.variant} {self.key}".lower()

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "fio": self.fio,
            "class": self.student_class,
            "variant": self.variant,
            "createdAt": self.created_at,
            "percent": self.percent,
            "mark": self.mark,
            "voided": self.voided,
        }


def filter_records(records, query) -> List[SummaryRecord]:
    """Case-insensitive substring filter over fio, class, variant and key."""
    q = (query or "").strip().lower()
    if not q:
        return list(records)
    return [r for r in records if q in r.haystack()]


def autocheck(record, payload, answer_key, thresholds=None) -> dict:
    """
    Regrade one fetched result payload against a resolved answer key.

    Returns the per-record report: identity, counts, points, percent, mark
    and a per-item verdict table ordered by task id.
    """
    student = extract_student_answers(payload)
    grading = grade_attempt(answer_key.tasks(), student.answers)

    items = []
    empty = 0
    for entry in grading["perTask"]:
        tid = str(entry["id"])
        raw = student.answers.get(tid, "")
        if not normalize(raw):
            empty += 1
        items.append({
            "n": tid,
            "user": raw,
            "right": entry["accepted"],
            "ok": entry["correct"],
            "earned": entry["earned"],
            "max": entry["max"],
        })

    meta = record.to_dict() if record is not None else {}
    return {
        "key": meta.get("key", ""),
        "createdAt": meta.get("createdAt", ""),
        "variant": meta.get("variant", "") or _payload_variant(payload),
        "fio": student.fio or meta.get("fio", ""),
        "class": student.student_class or meta.get("class", ""),
        "keyTitle": answer_key.title,
        "total": len(items),
        "correct": sum(1 for it in items if it["ok"]),
        "empty": empty,
        "points": grading["earned"],
        "maxPoints": grading["max"],
        "percent": grading["percent"],
        "mark": grade_label(grading["percent"], thresholds),
        "items": items,
        "error": None,
    }


def _payload_variant(payload) -> str:
    variant = payload.get("variant") if isinstance(payload, dict) else None
    if isinstance(variant, dict):
        return str(variant.get("id") or "")
    return str(variant or "")


def error_report(record, message, key_title="", thresholds=None) -> dict:
    meta = record.to_dict()
    return {
        "key": meta["key"], "createdAt": meta["createdAt"], "variant": meta["variant"],
        "fio": meta["fio"], "class": meta["class"], "keyTitle": key_title,
        "total": 0, "correct": 0, "empty": 0, "points": 0, "maxPoints": 0, "percent": 0,
        "mark": grade_label(0, thresholds), "items": [], "error": message,
    }


def cohort_summary(reports, thresholds=None) -> dict:
    """Count, average percent and the mark of the average over checked reports."""
    if not reports:
        return {"count": 0, "averagePercent": 0, "averageMark": None, "keyTitle": ""}
    avg = statistics.mean(r.get("percent") or 0 for r in reports)
    return {
        "count": len(reports),
        "averagePercent": round(avg, 1),
        "averageMark": grade_label(avg, thresholds),
        "keyTitle": reports[0].get("keyTitle") or "",
    }


class InstructorAggregator:
    """Instructor console state: last fetched list, filter, key and reports."""

    def __init__(self, remote, variant_loader=None, subject="", limit=200, thresholds=None):
        self.remote = remote
        self.variant_loader = variant_loader
        self.subject = subject
        self.limit = limit
        self.thresholds = thresholds
        self.records: List[SummaryRecord] = []
        self.query = ""
        self.key_source = None
        self.reports: List[dict] = []
        self._generation = 0
        self._lock = threading.Lock()

    # ---- list ----------------------------------------------------------------

    def refresh(self, variant=None, student_class=None, subject=None) -> List[SummaryRecord]:
        """Re-fetch the list. A response that arrives after a newer refresh was started is dropped."""
        with self._lock:
            self._generation += 1
            generation = self._generation
            if subject:
                self.subject = subject

        raw_items = self.remote.list(
            variant=normalize_variant_name(variant) or None,
            student_class=(student_class or "").strip() or None,
            limit=self.limit,
        )
        records = []
        for item in raw_items:
            if not isinstance(item, dict) or not item.get("key"):
                continue
            try:
                records.append(SummaryRecord.model_validate(item))
            except SchemaError as e:
                logger.warning("Skipping malformed list row %s: %s", item.get("key"), e)

        with self._lock:
            if generation != self._generation:
                logger.info("Discarding stale list response (generation %d < %d)", generation, self._generation)
                return self.visible()
            self.records = records
        logger.info("Loaded %d attempt records", len(records))
        return self.visible()

    def filter(self, query) -> List[SummaryRecord]:
        """Re-apply the local text filter without re-fetching."""
        self.query = query or ""
        return self.visible()

    def visible(self) -> List[SummaryRecord]:
        return filter_records(self.records, self.query)

    def find(self, key) -> SummaryRecord:
        for record in self.records:
            if record.key == key:
                return record
        return SummaryRecord(key=key)

    # ---- records -------------------------------------------------------------

    def get(self, key) -> dict:
        if not key:
            raise ValidationError("No record key given.")
        return self.remote.get(key)

    def set_key_source(self, key_source):
        if not isinstance(key_source, dict):
            raise ValidationError("Answer key must be a JSON object.")
        self.key_source = key_source

    def _variant_doc(self, variant_id):
        if self.variant_loader is None or not self.subject or not variant_id:
            return None
        try:
            return self.variant_loader.load_variant_doc(self.subject, variant_id)
        except KodislovoError as e:
            logger.warning("Variant %s unavailable for autocheck: %s", variant_id, e)
            return None

    def autocheck_one(self, key, key_source=None) -> dict:
        """Fetch and regrade one record; raises on fetch or key-resolution failure."""
        record = self.find(key)
        payload = self.get(key)
        answer_key = resolve_answer_key(
            key_source if key_source is not None else self.key_source,
            self._variant_doc(record.variant or _payload_variant(payload)),
            payload,
        )
        return autocheck(record, payload, answer_key, self.thresholds)

    def check_selected(self, keys, key_source=None) -> List[dict]:
        """
        Batch autocheck. The key is resolved once for the batch; without one,
        each record falls back to its own payload snapshot. Per-record fetch or
        key errors become error rows.
        """
        keys = [k for k in (keys or []) if k]
        if not keys:
            raise ValidationError("Nothing selected.")
        source = key_source if key_source is not None else self.key_source
        try:
            answer_key = resolve_answer_key(source, self._variant_doc(self._batch_variant(keys)))
        except KeyResolutionError:
            logger.info("No batch answer key, resolving per record")
            answer_key = None

        reports = []
        unresolved = []
        for key in keys:
            record = self.find(key)
            try:
                if answer_key is None:
                    reports.append(self.autocheck_one(key, source))
                else:
                    reports.append(autocheck(record, self.get(key), answer_key, self.thresholds))
            except KeyResolutionError as e:
                unresolved.append(e)
                reports.append(error_report(record, str(e), "", self.thresholds))
            except KodislovoError as e:
                logger.warning("Could not check %s: %s", key, e)
                reports.append(error_report(record, str(e), answer_key.title if answer_key else "",
                                            self.thresholds))

        if len(unresolved) == len(keys):
            raise unresolved[0]

        reports.sort(key=lambda r: ((r.get("class") or "").casefold(), (r.get("fio") or "").casefold()))
        self.reports = reports
        logger.info("Checked %d records", len(reports))
        return reports

    def _batch_variant(self, keys):
        variants = {self.find(k).variant for k in keys if self.find(k).variant}
        return variants.pop() if len(variants) == 1 else None

    def summary(self) -> dict:
        return cohort_summary(self.reports, self.thresholds)

    # ---- bulk ----------------------------------------------------------------

    def void(self, keys, variant=None, student_class=None) -> List[SummaryRecord]:
        """Void records remotely, then re-fetch so the list reflects server truth."""
        keys = [k for k in (keys or []) if k]
        if not keys:
            raise ValidationError("Nothing selected.")
        self.remote.void(keys)
        logger.info("Voided %d records", len(keys))
        return self.refresh(variant=variant, student_class=student_class)

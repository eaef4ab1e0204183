"""
Variant Documents
=================
Typed models for manifests and variant documents, plus retrieval from a
local controls directory or an HTTP base URL.

Layout (same for both sources):
    <subject>/variants/manifest.json
    <subject>/variants/<file listed in the manifest>
"""

import json
import logging
import os
import re
from typing import Dict, List, Optional, Union

import requests
from pydantic import AliasChoices, BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from kodislovo.errors import LoadError

logger = logging.getLogger(__name__)


def normalize_variant_name(value) -> str:
    """'variant_01', '01', '1', 'variant_1' -> '01'. Non-numeric names pass through."""
    s = str(value or "").strip()
    if not s:
        return ""
    m = re.search(r'(\d+)', s)
    if not m:
        return s
    digits = m.group(1)
    return f"0{digits}" if len(digits) == 1 else digits


class Task(BaseModel):
    id: int
    text: str = ""
    hint: Optional[str] = None
    points: Union[int, float] = 1
    accepted_answers: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("acceptedAnswers", "accepted_answers", "answers"),
    )

    model_config = {"frozen": True}

    @field_validator("accepted_answers", mode="before")
    @classmethod
    def _coerce_answers(cls, v):
        if v is None:
            return []
        if isinstance(v, (str, int, float)):
            return [str(v)]
        return [str(a) for a in v if a is not None]

    @field_validator("points", mode="before")
    @classmethod
    def _coerce_points(cls, v):
        return 1 if v is None or v == "" else v


class TextBlock(BaseModel):
    title: str = "Text"
    range_from: int
    range_to: int
    body: str

    model_config = {"frozen": True}

    def covers(self, task_id) -> bool:
        return self.range_from <= int(task_id) <= self.range_to


class Variant(BaseModel):
    id: str
    file: Optional[str] = None
    title: str = ""
    subtitle: str = ""
    time_limit_minutes: Optional[float] = None
    grading_thresholds: Optional[Dict[str, float]] = None
    text_blocks: List[TextBlock] = Field(default_factory=list)
    tasks: List[Task] = Field(default_factory=list)
    meta: dict = Field(default_factory=dict)

    def task_ids(self):
        return [str(t.id) for t in self.tasks]

    def text_block_for(self, task_id) -> Optional[TextBlock]:
        for block in self.text_blocks:
            if block.covers(task_id):
                return block
        return None


class ManifestEntry(BaseModel):
    id: str
    title: str = ""
    file: str

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, v):
        return str(v)


class EndpointBlock(BaseModel):
    base_url: str = Field("", validation_alias=AliasChoices("base_url", "url", "baseUrl"))
    token: str = ""


class Manifest(BaseModel):
    subject: str = ""
    subject_title: str = Field("", validation_alias=AliasChoices("subjectTitle", "subject_title"))
    variants: List[ManifestEntry] = Field(default_factory=list)
    submit: Optional[EndpointBlock] = None
    teacher: Optional[EndpointBlock] = None

    def find(self, variant_input) -> Optional[ManifestEntry]:
        """Find an entry by exact id, or by normalized variant number."""
        wanted = str(variant_input or "").strip()
        for entry in self.variants:
            if entry.id == wanted:
                return entry
        norm = normalize_variant_name(wanted)
        if not norm:
            return None
        for entry in self.variants:
            if normalize_variant_name(entry.id) == norm or norm in entry.file:
                return entry
        return None


def _parse_text_blocks(meta: dict) -> List[TextBlock]:
    raw = meta.get("textBlocks")
    if raw is None:
        raw = meta.get("texts")
    if isinstance(raw, dict):
        raw = list(raw.values())
    if not isinstance(raw, list):
        return []

    blocks = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        rng = item.get("range")
        body = item.get("body") or item.get("html") or ""
        if not isinstance(rng, (list, tuple)) or len(rng) != 2 or not body:
            continue
        try:
            start, end = int(rng[0]), int(rng[1])
        except (TypeError, ValueError):
            continue
        blocks.append(TextBlock(title=item.get("title") or "Text", range_from=start, range_to=end, body=body))

    blocks.sort(key=lambda b: b.range_from)
    return blocks


def _positive_or_none(value):
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        return None
    return minutes if minutes > 0 else None


def parse_variant(doc, variant_id, file=None) -> Variant:
    """Build a Variant from a raw variant document; raises LoadError on bad shape."""
    if not isinstance(doc, dict):
        raise LoadError(f"Variant {variant_id}: document is not a JSON object")
    tasks_raw = doc.get("tasks")
    if not isinstance(tasks_raw, list):
        raise LoadError(f"Variant {variant_id}: 'tasks' must be a list")

    meta = doc.get("meta") or {}
    if not isinstance(meta, dict):
        raise LoadError(f"Variant {variant_id}: 'meta' must be an object")

    time_limit = meta.get("timeLimitMinutes", meta.get("time_limit_minutes"))
    thresholds = meta.get("gradingThresholds") or meta.get("grading_thresholds") or None

    try:
        tasks = [Task.model_validate(t) for t in tasks_raw]
        variant = Variant(
            id=str(variant_id),
            file=file,
            title=meta.get("title") or "",
            subtitle=meta.get("subtitle") or "",
            time_limit_minutes=_positive_or_none(time_limit),
            grading_thresholds=thresholds,
            text_blocks=_parse_text_blocks(meta),
            tasks=tasks,
            meta=meta,
        )
    except PydanticValidationError as e:
        raise LoadError(f"Variant {variant_id}: {e}") from e

    ids = [t.id for t in tasks]
    if len(ids) != len(set(ids)):
        raise LoadError(f"Variant {variant_id}: duplicate task ids")
    return variant


def parse_manifest(doc, subject="") -> Manifest:
    if not isinstance(doc, dict):
        raise LoadError("manifest.json: document is not a JSON object")
    try:
        manifest = Manifest.model_validate({**doc, "subject": subject})
    except PydanticValidationError as e:
        raise LoadError(f"manifest.json: {e}") from e
    if not manifest.variants:
        raise LoadError("manifest.json: variant list is empty")
    return manifest


class VariantLoader:
    """Fetches manifests and variant documents for a subject."""

    def __init__(self, controls_dir=None, controls_url=None, timeout=15):
        self.controls_dir = controls_dir
        self.controls_url = (controls_url or "").rstrip('/')
        self.timeout = timeout

    def _fetch_json(self, subject, filename):
        relative = f"{subject}/variants/{filename}"
        if self.controls_url:
            url = f"{self.controls_url}/{relative}"
            try:
                resp = requests.get(url, timeout=self.timeout, headers={"Cache-Control": "no-store"})
            except requests.RequestException as e:
                raise LoadError(f"Could not load {url}: {e}") from e
            if resp.status_code != 200:
                raise LoadError(f"Could not load {url} (HTTP {resp.status_code})", not_found=resp.status_code == 404)
            try:
                return resp.json()
            except ValueError as e:
                raise LoadError(f"{url}: invalid JSON") from e

        path = os.path.join(self.controls_dir or "", subject, "variants", filename)
        if not os.path.exists(path):
            raise LoadError(f"Could not load {path}: file not found", not_found=True)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise LoadError(f"Could not load {path}: {e}") from e

    def load_manifest(self, subject) -> Manifest:
        manifest = parse_manifest(self._fetch_json(subject, "manifest.json"), subject=subject)
        logger.info("Loaded manifest for %s (%d variants)", subject, len(manifest.variants))
        return manifest

    def load_variant(self, subject, variant_input, manifest=None) -> Variant:
        """Load a variant by id; falls back to variant_XX.json beside the manifest."""
        manifest = manifest or self.load_manifest(subject)
        entry = manifest.find(variant_input)
        if entry is not None:
            doc = self._fetch_json(subject, entry.file)
            return parse_variant(doc, entry.id, file=entry.file)

        norm = normalize_variant_name(variant_input)
        if not norm:
            raise LoadError(f"Unknown variant: {variant_input!r}")
        guess = f"variant_{norm}.json"
        doc = self._fetch_json(subject, guess)
        return parse_variant(doc, f"variant_{norm}", file=guess)

    def load_variant_doc(self, subject, variant_input):
        """Raw variant JSON, used by autocheck as a fallback answer-key source."""
        manifest = self.load_manifest(subject)
        entry = manifest.find(variant_input)
        filename = entry.file if entry else f"variant_{normalize_variant_name(variant_input)}.json"
        return self._fetch_json(subject, filename)

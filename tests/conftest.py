"""
Shared test fixtures for Kodislovo.
Temporary data and controls directories, a controllable clock and an
in-memory stand-in for the remote result service. Zero network calls.
"""
import json
import os
from datetime import datetime, timedelta, timezone

import pytest

from kodislovo.config import Config
from kodislovo.errors import RemoteError
from kodislovo.services.session_store import SessionStore
from kodislovo.services.variants import VariantLoader, normalize_variant_name, parse_variant

SUBJECT = "russian"

SAMPLE_VARIANT_DOC = {
    "meta": {
        "title": "Контрольная работа",
        "subtitle": "Вариант 1",
        "timeLimitMinutes": 10,
        "textBlocks": [
            {"title": "Текст 1", "range": [1, 2], "body": "<p>Ёлка стояла у дома.</p>"},
        ],
    },
    "tasks": [
        {"id": 1, "text": "Какое дерево стояло у дома?", "acceptedAnswers": ["ёлка", "ель"]},
        {"id": 2, "text": "Сколько слов в первом предложении?", "answers": "4"},
        {"id": 3, "text": "Цвет неба", "points": 2, "acceptedAnswers": ["синий", "голубой"]},
    ],
}

SAMPLE_MANIFEST = {
    "subjectTitle": "Русский язык",
    "variants": [
        {"id": "variant_01", "title": "Вариант 1", "file": "variant_01.json"},
    ],
    "submit": {"base_url": "https://results.example.test/submit", "token": "submit-token"},
}


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeRemote:
    """In-memory remote service with single-use reset codes."""

    def __init__(self):
        self.configured = True
        self.records = {}
        self.voided = set()
        self.submitted = []
        self.codes = {}
        self.timer = {}
        self.fail_submit = False
        self.fail_get = set()
        self.calls = []
        self._seq = 0

    def add_record(self, key, payload, variant="variant_01", student_class="7А", fio="Иванов Иван",
                   created_at="2026-03-02T09:30:00.000Z"):
        self.records[key] = {
            "summary": {"key": key, "fio": fio, "class": student_class, "variant": variant,
                        "createdAt": created_at},
            "payload": payload,
        }

    def list(self, variant=None, student_class=None, limit=200):
        self.calls.append(("list", variant, student_class))
        items = []
        for key, rec in self.records.items():
            summary = dict(rec["summary"], voided=key in self.voided)
            if variant and normalize_variant_name(summary["variant"]) != variant:
                continue
            if student_class and summary["class"] != student_class:
                continue
            items.append(summary)
        return items[:limit]

    def get(self, key):
        self.calls.append(("get", key))
        if key in self.fail_get or key not in self.records:
            raise RemoteError("Not found", status=404)
        return self.records[key]["payload"]

    def void(self, keys):
        self.calls.append(("void", list(keys)))
        self.voided.update(keys)
        return {"ok": True}

    def config_get(self, subject, variant=None):
        self.calls.append(("config_get", subject, variant))
        return {"timeLimitMinutes": self.timer.get((subject, variant), self.timer.get((subject, None)))}

    def config_set(self, subject, time_limit_minutes, variant=None):
        self.calls.append(("config_set", subject, variant, time_limit_minutes))
        self.timer[(subject, variant)] = time_limit_minutes
        return {"ok": True}

    def reset_issue(self, subject, variant, student_class, fio):
        self._seq += 1
        code = f"RST{self._seq:03d}"
        self.codes[code] = {"scope": (subject, variant, student_class, fio), "used": False}
        return {"code": code, "expiresAt": "2026-03-03T09:00:00.000Z", "key": f"reset:{code}"}

    def reset_consume(self, subject, variant, student_class, fio, code):
        entry = self.codes.get(code)
        if entry is None or entry["used"]:
            raise RemoteError("Code is invalid or already used", status=400)
        if entry["scope"] != (subject, variant, student_class, fio):
            raise RemoteError("Code was issued for another student", status=403)
        entry["used"] = True
        return {"ok": True}

    def submit(self, payload):
        self.calls.append(("submit",))
        if self.fail_submit:
            raise RemoteError("Service unavailable", status=503)
        self._seq += 1
        key = f"res{self._seq:03d}"
        self.submitted.append(payload)
        return {"ok": True, "key": key}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def variant_doc():
    return json.loads(json.dumps(SAMPLE_VARIANT_DOC))


@pytest.fixture
def variant(variant_doc):
    return parse_variant(variant_doc, "variant_01", file="variant_01.json")


@pytest.fixture
def controls_dir(tmp_path, variant_doc):
    """Controls tree: <subject>/variants/manifest.json + variant_01.json."""
    root = tmp_path / "controls"
    variants = root / SUBJECT / "variants"
    variants.mkdir(parents=True)
    (variants / "manifest.json").write_text(json.dumps(SAMPLE_MANIFEST, ensure_ascii=False), encoding="utf-8")
    (variants / "variant_01.json").write_text(json.dumps(variant_doc, ensure_ascii=False), encoding="utf-8")
    return str(root)


@pytest.fixture
def loader(controls_dir):
    return VariantLoader(controls_dir=controls_dir)


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / "data"
    path.mkdir()
    return str(path)


@pytest.fixture
def store(data_dir):
    return SessionStore(os.path.join(data_dir, "sessions.json"))


@pytest.fixture
def cfg(data_dir, controls_dir):
    c = Config()
    c.update({
        "data_dir": data_dir,
        "controls_dir": controls_dir,
        "controls_url": "",
        "api_base": "",
        "api_token": "",
        "teacher_panel_token": "panel-secret",
        "site_url": "https://school.example.test",
        "default_subject": SUBJECT,
        "tick_seconds": 3600,
    })
    return c


@pytest.fixture
def app(cfg, remote, loader, clock):
    from kodislovo.app import create_app
    application = create_app(cfg, remote=remote, loader=loader, clock=clock)
    application.config["TESTING"] = True
    yield application
    application.extensions["kodislovo"]["exam"].close()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def teacher_headers():
    return {"Authorization": "Bearer panel-secret"}


def make_payload(answers, name="Иванов Иван", student_class="7А", variant_id="variant_01"):
    """Result payload shaped like the one the student side submits."""
    return {
        "schema": "kodislovo.result.v1",
        "variant": {"id": variant_id},
        "student": {"name": name, "class": student_class},
        "answers": answers,
        "answerKey": {
            "variantId": variant_id,
            "tasks": [
                {"id": 1, "points": 1, "acceptedAnswers": ["ёлка", "ель"]},
                {"id": 2, "points": 1, "acceptedAnswers": ["4"]},
                {"id": 3, "points": 2, "acceptedAnswers": ["синий", "голубой"]},
            ],
        },
    }


@pytest.fixture
def payload_factory():
    return make_payload

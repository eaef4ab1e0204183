"""
Remote Service Client
=====================
JSON-over-POST client for the result storage service (list/get/void,
config, reset codes, submission). Authenticates with a static token header.

The service itself is external; this module only encodes its contract.
"""

import logging

import requests

from kodislovo.errors import KodislovoError, RemoteError

logger = logging.getLogger(__name__)

TEACHER_TOKEN_HEADER = "X-Teacher-Token"
SUBMIT_TOKEN_HEADER = "X-Submit-Token"


def _error_message(resp, data):
    if isinstance(data, dict):
        msg = data.get("message") or data.get("error")
        if msg:
            return str(msg)
    return resp.text or f"HTTP {resp.status_code}"


def post_json(url, body, headers=None, timeout=15):
    """POST a JSON body, return the decoded JSON response (or {"ok": True} when empty)."""
    try:
        resp = requests.post(
            url,
            json=body or {},
            headers={"Content-Type": "application/json", **(headers or {})},
            timeout=timeout,
        )
    except requests.RequestException as e:
        logger.error("Remote call %s failed: %s", url, e)
        raise RemoteError(f"Network error: {e}") from e

    text = resp.text
    data = None
    if text:
        try:
            data = resp.json()
        except ValueError:
            data = None

    if not resp.ok:
        logger.warning("Remote call %s returned HTTP %s", url, resp.status_code)
        raise RemoteError(_error_message(resp, data), status=resp.status_code, body=data if data is not None else text)

    logger.info("Remote call %s ok", url)
    return data if data is not None else {"ok": True}


class RemoteClient:
    """Client for the instructor/reset endpoints plus the submission endpoint."""

    def __init__(self, base_url, token, submit_url=None, submit_token=None, timeout=15):
        self.base_url = (base_url or "").rstrip('/')
        self.token = token or ""
        self.submit_url = submit_url or (self.base_url + "/submit" if self.base_url else "")
        self.submit_token = submit_token or self.token
        self.timeout = timeout

    @classmethod
    def from_manifest(cls, manifest, fallback_base="", fallback_token="", timeout=15):
        """Endpoint config from a manifest's teacher/submit blocks, else the fallback."""
        teacher = manifest.teacher if manifest is not None else None
        submit = manifest.submit if manifest is not None else None
        return cls(
            base_url=(teacher.base_url if teacher and teacher.base_url else fallback_base),
            token=(teacher.token if teacher and teacher.token else fallback_token),
            submit_url=(submit.base_url if submit and submit.base_url else None),
            submit_token=(submit.token if submit and submit.token else None),
            timeout=timeout,
        )

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.token)

    def _call(self, path, body):
        if not self.configured:
            raise RemoteError("Remote service is not configured (base_url / token missing)")
        return post_json(self.base_url + path, body, {TEACHER_TOKEN_HEADER: self.token}, self.timeout)

    # ---- instructor ----------------------------------------------------------

    def list(self, variant=None, student_class=None, limit=200):
        body = {"limit": limit}
        if variant:
            body["variant"] = variant
        if student_class:
            body["class"] = student_class
        data = self._call("/teacher/list", body)
        items = data.get("items") if isinstance(data, dict) else None
        return items if isinstance(items, list) else []

    def get(self, key):
        return self._call("/teacher/get", {"key": key})

    def void(self, keys):
        return self._call("/teacher/void", {"keys": list(keys)})

    def config_get(self, subject, variant=None):
        body = {"subject": subject}
        if variant:
            body["variant"] = variant
        return self._call("/teacher/config/get", body)

    def config_set(self, subject, time_limit_minutes, variant=None):
        body = {"subject": subject, "timeLimitMinutes": time_limit_minutes}
        if variant:
            body["variant"] = variant
        return self._call("/teacher/config/set", body)

    # ---- reset codes -------------------------------------------------------

    def reset_issue(self, subject, variant, student_class, fio):
        return self._call("/teacher/reset", {
            "subject": subject, "variant": variant, "class": student_class, "fio": fio,
        })

    def reset_consume(self, subject, variant, student_class, fio, code):
        return self._call("/teacher/reset/consume", {
            "subject": subject, "variant": variant, "class": student_class, "fio": fio, "code": code,
        })

    # ---- submission ----------------------------------------------------------

    def submit(self, payload):
        if not self.submit_url or not self.submit_token:
            raise RemoteError("Submission endpoint is not configured (submit url / token missing)")
        return post_json(self.submit_url, payload, {SUBMIT_TOKEN_HEADER: self.submit_token}, self.timeout)


def client_for_subject(cfg, loader, subject, manifest=None):
    """
    Remote client for a subject: endpoints from the subject's manifest,
    falling back to KODISLOVO_API_BASE / KODISLOVO_API_TOKEN.
    """
    if manifest is None and loader is not None and subject:
        try:
            manifest = loader.load_manifest(subject)
        except KodislovoError as e:
            logger.warning("No manifest for %s, using configured remote endpoint: %s", subject, e)
    return RemoteClient.from_manifest(manifest, cfg.api_base, cfg.api_token, cfg.http_timeout)

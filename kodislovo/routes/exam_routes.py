"""
Student API routes for Kodislovo.
Loads a variant, drives the attempt (answers, navigation, finish), submits
the result and redeems reset codes.
"""
import logging

from flask import Blueprint, Response, request, jsonify

from kodislovo.errors import RemoteError, ValidationError
from kodislovo.services.deadline import utc_now
from kodislovo.services.remote_api import client_for_subject
from kodislovo.services.report_export import json_download
from kodislovo.services.reset_workflow import redeem_reset
from kodislovo.services.result_payload import build_result_payload
from kodislovo.services.session import SessionController
from kodislovo.services.session_store import session_key

logger = logging.getLogger(__name__)

exam_bp = Blueprint('exam', __name__)

FINISH_NOTICE_AUTO = "Time is up. The control was finished automatically; answers can no longer be changed."
FINISH_NOTICE_MANUAL = "The control is finished. Enter your name and class and send the result."

# Set by app.py during initialization
exam_context = None


class ExamContext:
    """Shared state for the student routes: loaded controllers and their manifests."""

    def __init__(self, cfg, loader, store, guard, remote=None, clock=utc_now):
        self.cfg = cfg
        self.loader = loader
        self.store = store
        self.guard = guard
        self.remote_override = remote
        self.clock = clock
        self.controllers = {}
        self.manifests = {}
        self.notices = {}
        self.current_key = None

    def remote_for(self, subject):
        if self.remote_override is not None:
            return self.remote_override
        return client_for_subject(self.cfg, self.loader, subject, self.manifests.get(subject))

    def effective_time_limit(self, subject, variant):
        """Remote timer config wins over the variant's own limit when it is set and positive."""
        remote = self.remote_for(subject)
        if remote is None or not remote.configured:
            return variant.time_limit_minutes
        try:
            data = remote.config_get(subject, variant.id)
        except RemoteError as e:
            logger.warning("Timer config unavailable for %s/%s, using variant limit: %s", subject, variant.id, e)
            return variant.time_limit_minutes
        try:
            minutes = float((data or {}).get("timeLimitMinutes") or 0)
        except (TypeError, ValueError):
            minutes = 0
        return minutes if minutes > 0 else variant.time_limit_minutes

    def _on_finish(self, controller, auto):
        self.notices[controller.key] = FINISH_NOTICE_AUTO if auto else FINISH_NOTICE_MANUAL

    def load(self, subject, variant_input):
        manifest = self.loader.load_manifest(subject)
        self.manifests[subject] = manifest
        variant = self.loader.load_variant(subject, variant_input, manifest=manifest)

        # one live attempt at a time; its ticker goes with it
        self.close()
        self.controllers.clear()
        key = session_key(subject, variant.id)

        controller = SessionController(
            self.store, variant, subject,
            time_limit_minutes=self.effective_time_limit(subject, variant),
            clock=self.clock,
            tick_interval=self.cfg.tick_seconds,
            thresholds=self.cfg.grade_thresholds,
        )
        controller.finish_listeners.append(self._on_finish)
        controller.open()
        self.controllers[key] = controller
        self.current_key = key
        return controller

    def controller(self, subject=None, variant=None):
        if subject and variant:
            for key, ctrl in self.controllers.items():
                if ctrl.subject == subject and (ctrl.variant.id == variant or key == session_key(subject, variant)):
                    return ctrl
            raise ValidationError(f"Variant {variant} is not loaded; call /api/exam/load first.")
        if self.current_key is None or self.current_key not in self.controllers:
            raise ValidationError("No control is loaded; call /api/exam/load first.")
        return self.controllers[self.current_key]

    def subject_title(self, subject):
        manifest = self.manifests.get(subject)
        return manifest.subject_title if manifest is not None and manifest.subject_title else subject

    def close(self):
        for ctrl in self.controllers.values():
            ctrl.close()


def init_exam_routes(context):
    """Initialize exam routes with the shared context from app.py."""
    global exam_context
    exam_context = context


def _body():
    return request.get_json(silent=True) or {}


def _controller():
    data = _body() if request.method != 'GET' else request.args
    return exam_context.controller(data.get('subject'), data.get('variant'))


def _state(ctrl):
    if ctrl.deadline is not None:
        ctrl.deadline.tick()
    state = ctrl.snapshot()
    state["notice"] = exam_context.notices.get(ctrl.key)
    state["subjectTitle"] = exam_context.subject_title(ctrl.subject)
    return state


@exam_bp.route('/api/exam/manifest/<subject>')
def get_manifest(subject):
    """List the variants available for a subject."""
    manifest = exam_context.loader.load_manifest(subject)
    exam_context.manifests[subject] = manifest
    return jsonify({
        "subject": subject,
        "subjectTitle": manifest.subject_title or subject,
        "variants": [{"id": v.id, "title": v.title, "file": v.file} for v in manifest.variants],
    })


@exam_bp.route('/api/exam/load', methods=['POST'])
def load_variant():
    """Load a variant and create or resume its attempt."""
    data = _body()
    subject = (data.get('subject') or exam_context.cfg.default_subject).strip()
    variant = data.get('variant')
    if not variant:
        raise ValidationError("No variant given.")
    ctrl = exam_context.load(subject, variant)
    return jsonify(_state(ctrl))


@exam_bp.route('/api/exam/state')
def get_state():
    return jsonify(_state(_controller()))


@exam_bp.route('/api/exam/student', methods=['POST'])
def set_student():
    data = _body()
    ctrl = _controller()
    ctrl.set_student(data.get('name'), data.get('class'))
    return jsonify(_state(ctrl))


@exam_bp.route('/api/exam/answer', methods=['POST'])
def answer():
    data = _body()
    task_id = data.get('taskId', data.get('id'))
    if task_id is None:
        raise ValidationError("No task id given.")
    ctrl = _controller()
    ctrl.answer(task_id, data.get('value', ''))
    return jsonify(_state(ctrl))


@exam_bp.route('/api/exam/navigate', methods=['POST'])
def navigate():
    data = _body()
    ctrl = _controller()
    try:
        if data.get('index') is not None:
            ctrl.go_to(int(data['index']))
        else:
            ctrl.navigate(int(data.get('delta', 0)))
    except (TypeError, ValueError):
        raise ValidationError("index / delta must be integers.") from None
    return jsonify(_state(ctrl))


@exam_bp.route('/api/exam/finish', methods=['POST'])
def finish():
    ctrl = _controller()
    changed = ctrl.finish(auto=False)
    state = _state(ctrl)
    state["changed"] = changed
    return jsonify(state)


@exam_bp.route('/api/exam/submit', methods=['POST'])
def submit():
    """Send the finished attempt to the remote service. Local state survives a failure."""
    ctrl = _controller()
    with exam_context.guard.hold(f"submit:{ctrl.key}"):
        attempt = ctrl.attempt
        if not attempt.is_finished:
            raise ValidationError("Finish the control before sending the result.")
        if not attempt.student_name.strip() or not attempt.student_class.strip():
            raise ValidationError("Fill in the student name and class before sending.")

        payload = build_result_payload(attempt, ctrl.variant, ctrl.score(),
                                       subject_title=exam_context.subject_title(ctrl.subject))
        data = exam_context.remote_for(ctrl.subject).submit(payload)
        submission_key = data.get("key") if isinstance(data, dict) else None
        ctrl.mark_submitted(submission_key)

    logger.info("Submitted %s as %s", ctrl.key, submission_key)
    state = _state(ctrl)
    state["submission"] = {"ok": True, "key": submission_key}
    return jsonify(state)


@exam_bp.route('/api/exam/reset', methods=['POST'])
def reset():
    """Redeem a one-time reset code and start the attempt over."""
    data = _body()
    ctrl = _controller()
    with exam_context.guard.hold(f"reset:{ctrl.key}"):
        redeem_reset(exam_context.remote_for(ctrl.subject), ctrl, data.get('code'))
    exam_context.notices.pop(ctrl.key, None)
    return jsonify(_state(ctrl))


@exam_bp.route('/api/exam/result')
def download_result():
    """Result payload of the finished attempt as a JSON file."""
    ctrl = _controller()
    if not ctrl.attempt.is_finished:
        raise ValidationError("The result is available after the control is finished.")
    payload = build_result_payload(ctrl.attempt, ctrl.variant, ctrl.score(),
                                   subject_title=exam_context.subject_title(ctrl.subject))
    filename = f"result_{ctrl.subject}_{ctrl.variant.id}.json"
    return Response(
        json_download(payload),
        mimetype='application/json',
        headers={'Content-Disposition': f'attachment; filename="{filename}"'},
    )

"""
Instructor API routes for Kodislovo.
Attempt list, record retrieval, autocheck against an answer key, bulk void,
exports, reset codes and timer configuration. All routes require the panel token.
"""
import logging

from flask import Blueprint, Response, request, jsonify

from kodislovo.errors import ValidationError
from kodislovo.services.instructor import InstructorAggregator
from kodislovo.services.remote_api import client_for_subject
from kodislovo.services.report_export import list_csv, print_html, reports_csv
from kodislovo.services.reset_workflow import request_reset
from kodislovo.services.answer_keys import resolve_answer_key

logger = logging.getLogger(__name__)

teacher_bp = Blueprint('teacher', __name__)

# Set by app.py during initialization
teacher_context = None


class TeacherContext:
    """Instructor console state, one aggregator per subject."""

    def __init__(self, cfg, loader, history, guard, remote=None):
        self.cfg = cfg
        self.loader = loader
        self.history = history
        self.guard = guard
        self.remote_override = remote
        self.aggregators = {}
        self.current_subject = cfg.default_subject

    def remote_for(self, subject):
        if self.remote_override is not None:
            return self.remote_override
        return client_for_subject(self.cfg, self.loader, subject)

    def aggregator(self, subject=None) -> InstructorAggregator:
        subject = (subject or self.current_subject or "").strip()
        if not subject:
            raise ValidationError("No subject given.")
        self.current_subject = subject
        if subject not in self.aggregators:
            self.aggregators[subject] = InstructorAggregator(
                self.remote_for(subject),
                variant_loader=self.loader,
                subject=subject,
                limit=self.cfg.list_limit,
                thresholds=self.cfg.grade_thresholds,
            )
        return self.aggregators[subject]


def init_teacher_routes(context):
    """Initialize teacher routes with the shared context from app.py."""
    global teacher_context
    teacher_context = context


def _body():
    return request.get_json(silent=True) or {}


def _records_json(records):
    return [r.to_dict() for r in records]


def _csv_response(text, filename):
    # BOM so spreadsheet apps detect UTF-8
    return Response(
        "\ufeff" + text,
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename="{filename}"'},
    )


@teacher_bp.route('/api/teacher/list', methods=['POST'])
def list_attempts():
    """Fetch the attempt list, optionally filtered by variant and class."""
    data = _body()
    agg = teacher_context.aggregator(data.get('subject'))
    records = agg.refresh(variant=data.get('variant'), student_class=data.get('class'))
    return jsonify({"items": _records_json(records), "total": len(agg.records)})


@teacher_bp.route('/api/teacher/filter')
def filter_attempts():
    """Re-apply the local text filter to the last fetched list."""
    agg = teacher_context.aggregator(request.args.get('subject'))
    records = agg.filter(request.args.get('q', ''))
    return jsonify({"items": _records_json(records), "total": len(agg.records)})


@teacher_bp.route('/api/teacher/get', methods=['POST'])
def get_record():
    data = _body()
    agg = teacher_context.aggregator(data.get('subject'))
    return jsonify(agg.get(data.get('key')))


@teacher_bp.route('/api/teacher/key', methods=['POST'])
def upload_key():
    """Store an uploaded answer-key document for later autochecks."""
    data = _body()
    agg = teacher_context.aggregator(data.get('subject'))
    key_source = data.get('key')
    if not isinstance(key_source, dict):
        raise ValidationError("Answer key must be a JSON object.")
    resolved = resolve_answer_key(key_source)
    agg.set_key_source(key_source)
    return jsonify({"ok": True, "tasks": len(resolved.answers), "title": resolved.title})


@teacher_bp.route('/api/teacher/autocheck', methods=['POST'])
def autocheck():
    """Regrade one or more records against the uploaded key (or the variant's own key)."""
    data = _body()
    agg = teacher_context.aggregator(data.get('subject'))
    keys = data.get('keys') or ([data['key']] if data.get('key') else [])
    reports = agg.check_selected(keys, data.get('answerKey'))
    return jsonify({"reports": reports, "summary": agg.summary()})


@teacher_bp.route('/api/teacher/void', methods=['POST'])
def void_records():
    data = _body()
    agg = teacher_context.aggregator(data.get('subject'))
    with teacher_context.guard.hold(f"void:{agg.subject}"):
        records = agg.void(data.get('keys'), variant=data.get('variant'), student_class=data.get('class'))
    return jsonify({"ok": True, "items": _records_json(records), "total": len(agg.records)})


@teacher_bp.route('/api/teacher/export/list.csv')
def export_list():
    agg = teacher_context.aggregator(request.args.get('subject'))
    return _csv_response(list_csv(agg.visible()), f"{agg.subject}_list.csv")


@teacher_bp.route('/api/teacher/export/report.csv')
def export_reports():
    agg = teacher_context.aggregator(request.args.get('subject'))
    if not agg.reports:
        raise ValidationError("Nothing checked yet; run autocheck first.")
    return _csv_response(reports_csv(agg.reports), f"{agg.subject}_autocheck.csv")


@teacher_bp.route('/api/teacher/print')
def print_report():
    agg = teacher_context.aggregator(request.args.get('subject'))
    if not agg.reports:
        raise ValidationError("Nothing checked yet; run autocheck first.")
    html = print_html(agg.reports, agg.summary(), title=f"Autocheck: {agg.subject}")
    return Response(html, mimetype='text/html')


@teacher_bp.route('/api/teacher/reset', methods=['POST'])
def issue_reset():
    """Mint a one-time reset code for one student."""
    data = _body()
    subject = (data.get('subject') or teacher_context.current_subject or "").strip()
    with teacher_context.guard.hold(f"reset-issue:{subject}"):
        entry = request_reset(
            teacher_context.remote_for(subject),
            subject, data.get('variant'), data.get('class'), data.get('fio'),
            history=teacher_context.history,
            site_url=teacher_context.cfg.site_url,
        )
    return jsonify(entry)


@teacher_bp.route('/api/teacher/reset/history', methods=['GET'])
def reset_history():
    return jsonify({"items": teacher_context.history.entries()})


@teacher_bp.route('/api/teacher/reset/history', methods=['DELETE'])
def clear_reset_history():
    teacher_context.history.clear()
    return jsonify({"ok": True})


@teacher_bp.route('/api/teacher/config/get', methods=['POST'])
def timer_config_get():
    data = _body()
    subject = (data.get('subject') or teacher_context.current_subject or "").strip()
    result = teacher_context.remote_for(subject).config_get(subject, data.get('variant') or None)
    return jsonify({"subject": subject, "variant": data.get('variant'),
                    "timeLimitMinutes": (result or {}).get("timeLimitMinutes")})


@teacher_bp.route('/api/teacher/config/set', methods=['POST'])
def timer_config_set():
    data = _body()
    subject = (data.get('subject') or teacher_context.current_subject or "").strip()
    minutes = data.get('timeLimitMinutes')
    if isinstance(minutes, bool) or not isinstance(minutes, (int, float)) or minutes < 0 or int(minutes) != minutes:
        raise ValidationError("timeLimitMinutes must be a non-negative whole number.")
    teacher_context.remote_for(subject).config_set(subject, int(minutes), data.get('variant') or None)
    logger.info("Timer for %s/%s set to %s min", subject, data.get('variant') or '*', int(minutes))
    return jsonify({"ok": True, "subject": subject, "variant": data.get('variant'),
                    "timeLimitMinutes": int(minutes)})

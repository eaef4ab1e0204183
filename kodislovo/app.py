#!/usr/bin/env python3
"""
Kodislovo - timed school controls with an instructor console
============================================================
Run: python3 -m kodislovo.app
Then open: http://localhost:3000
"""

import atexit
import logging

from flask import Flask, jsonify
from flask_cors import CORS

from kodislovo import __version__
from kodislovo.auth import init_auth
from kodislovo.config import config as default_config, HOST, PORT, DEBUG
from kodislovo.errors import KodislovoError
from kodislovo.routes import ExamContext, TeacherContext, register_routes
from kodislovo.services.deadline import utc_now
from kodislovo.services.inflight import InFlightGuard
from kodislovo.services.reset_workflow import ResetHistory
from kodislovo.services.session_store import SessionStore
from kodislovo.services.variants import VariantLoader

logger = logging.getLogger(__name__)


def create_app(cfg=None, remote=None, loader=None, clock=None):
    """
    Build the Flask app.

    Args:
        cfg: Config instance (defaults to the global config)
        remote: remote service client override, used for every subject
        loader: VariantLoader override
        clock: callable returning the current UTC datetime
    """
    cfg = cfg or default_config
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    app = Flask(__name__)
    CORS(app)

    # ══════════════════════════════════════════════════════════════
    # AUTHENTICATION
    # ══════════════════════════════════════════════════════════════
    init_auth(app, cfg)

    # ══════════════════════════════════════════════════════════════
    # STATE
    # ══════════════════════════════════════════════════════════════
    loader = loader or VariantLoader(
        controls_dir=cfg.controls_dir,
        controls_url=cfg.controls_url,
        timeout=cfg.http_timeout,
    )
    guard = InFlightGuard()
    exam_context = ExamContext(cfg, loader, SessionStore(cfg.sessions_file), guard,
                               remote=remote, clock=clock or utc_now)
    teacher_context = TeacherContext(cfg, loader, ResetHistory(cfg.reset_history_file), guard,
                                     remote=remote)
    app.extensions['kodislovo'] = {"exam": exam_context, "teacher": teacher_context}

    register_routes(app, exam_context, teacher_context)

    @app.errorhandler(KodislovoError)
    def handle_kodislovo_error(e):
        if e.http_status >= 500:
            logger.error("%s: %s", type(e).__name__, e)
        else:
            logger.info("%s: %s", type(e).__name__, e)
        return jsonify({"error": str(e), "type": type(e).__name__}), e.http_status

    @app.route('/api/status')
    def get_status():
        return jsonify({
            "version": __version__,
            "activeAttempt": exam_context.current_key,
            "defaultSubject": cfg.default_subject,
        })

    atexit.register(exam_context.close)
    logger.info("Kodislovo %s ready (data dir %s)", __version__, cfg.data_dir)
    return app


if __name__ == '__main__':
    create_app().run(host=HOST, port=PORT, debug=DEBUG, threaded=True)

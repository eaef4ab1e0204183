"""
Kodislovo API Routes
====================

Usage:
    from kodislovo.routes import register_routes
    register_routes(app, exam_context, teacher_context)
"""
from .exam_routes import exam_bp, init_exam_routes, ExamContext
from .teacher_routes import teacher_bp, init_teacher_routes, TeacherContext


def register_routes(app, exam_context, teacher_context):
    """Register all route blueprints with the Flask app."""
    init_exam_routes(exam_context)
    init_teacher_routes(teacher_context)

    app.register_blueprint(exam_bp)
    app.register_blueprint(teacher_bp)


__all__ = [
    'register_routes',
    'exam_bp',
    'teacher_bp',
    'ExamContext',
    'TeacherContext',
    'init_exam_routes',
    'init_teacher_routes',
]

"""
Kodislovo Backend Package
=========================

Flask-based backend for timed, resumable controls (exams) and the
instructor review console.

Structure:
- routes/: API route blueprints (student exam, instructor console)
- services/: grading, session state, persistence, remote service client
- config.py: Configuration management
- errors.py: Error taxonomy shared by services and routes
"""

from .config import config, Config

__version__ = "1.0.0"

__all__ = ['config', 'Config']

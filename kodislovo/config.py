"""
Configuration management for Kodislovo backend.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Base paths
BASE_DIR = Path(__file__).parent.parent
PACKAGE_DIR = Path(__file__).parent

# User data directories
HOME_DIR = Path.home()
DEFAULT_DATA_DIR = str(HOME_DIR / ".kodislovo_data")
DEFAULT_CONTROLS_DIR = str(BASE_DIR / "controls")

# Server configuration
HOST = "0.0.0.0"
PORT = 3000
DEBUG = False

# Grading configuration (five-point school marks, minimum percent per mark)
DEFAULT_GRADE_THRESHOLDS = {"5": 87, "4": 67, "3": 42, "2": 0}

RESULT_SCHEMA = "kodislovo.result.v1"
SESSION_SCHEMA = "kodislovo.control.v2"


def _env_float(name, default):
    try:
        return float(os.getenv(name, "") or default)
    except ValueError:
        return default


def _env_int(name, default):
    try:
        return int(os.getenv(name, "") or default)
    except ValueError:
        return default


class Config:
    """Application configuration class."""

    def __init__(self):
        self.data_dir = os.getenv("KODISLOVO_DATA_DIR", DEFAULT_DATA_DIR)
        self.controls_dir = os.getenv("KODISLOVO_CONTROLS_DIR", DEFAULT_CONTROLS_DIR)
        self.controls_url = os.getenv("KODISLOVO_CONTROLS_URL", "")
        self.api_base = os.getenv("KODISLOVO_API_BASE", "")
        self.api_token = os.getenv("KODISLOVO_API_TOKEN", "")
        self.teacher_panel_token = os.getenv("KODISLOVO_TEACHER_PANEL_TOKEN", "")
        self.site_url = os.getenv("KODISLOVO_SITE_URL", "")
        self.default_subject = os.getenv("KODISLOVO_DEFAULT_SUBJECT", "russian")
        self.tick_seconds = _env_float("KODISLOVO_TICK_SECONDS", 0.25)
        self.list_limit = _env_int("KODISLOVO_LIST_LIMIT", 200)
        self.http_timeout = _env_float("KODISLOVO_HTTP_TIMEOUT", 15)
        self.grade_thresholds = dict(DEFAULT_GRADE_THRESHOLDS)

    @property
    def sessions_file(self):
        return os.path.join(self.data_dir, "sessions.json")

    @property
    def reset_history_file(self):
        return os.path.join(self.data_dir, "reset_history.json")

    def to_dict(self):
        return {
            "data_dir": self.data_dir,
            "controls_dir": self.controls_dir,
            "controls_url": self.controls_url,
            "api_base": self.api_base,
            "site_url": self.site_url,
            "default_subject": self.default_subject,
            "tick_seconds": self.tick_seconds,
            "list_limit": self.list_limit,
            "http_timeout": self.http_timeout,
            "grade_thresholds": dict(self.grade_thresholds),
        }

    def update(self, data: dict):
        for key, value in data.items():
            if hasattr(self, key):
                setattr(self, key, value)


# Global config instance
config = Config()

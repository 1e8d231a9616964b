"""
Configuration for the Presence Backend
======================================
Process-level settings read from the environment.

Runtime-tunable values (attendance thresholds, page size) live in the
``system_config`` table instead; see ``database.models.DEFAULT_CONFIG``.
"""

import os
from pathlib import Path

PACKAGE_DIR = Path(__file__).parent

# ============== Database ==============
DATABASE_URL = os.environ.get(
    "DATABASE_URL",
    f"sqlite:///{PACKAGE_DIR / 'database' / 'presence.db'}"
)

# ============== Face Recognition Service ==============
FACE_RECOGNITION_URL = os.environ.get("FACE_RECOGNITION_URL", "http://127.0.0.1:5000")
RECOGNITION_TIMEOUT_SECONDS = float(os.environ.get("RECOGNITION_TIMEOUT_SECONDS", "5"))

# ============== Photo Storage ==============
STORAGE_DIR = Path(os.environ.get("STORAGE_DIR", "storage")).resolve()
BASE_URL = os.environ.get("BASE_URL", "http://localhost:8000")
MAX_PHOTO_BYTES = int(os.environ.get("MAX_PHOTO_BYTES", str(5 * 1024 * 1024)))
ALLOWED_PHOTO_TYPES = ("image/jpeg", "image/png")

# ============== Server ==============
DEBUG = os.environ.get("DEBUG", "false").lower() in ("true", "1", "yes", "on")
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8000"))

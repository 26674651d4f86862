"""
Wound-Care Coverage Engine: Configuration
=========================================
Centralised runtime settings. Loads overrides from the project-level .env file.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# ── Paths ───────────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent          # repo root
PACKAGE_DIR = Path(__file__).resolve().parent                  # woundcare/

# ── Load .env ───────────────────────────────────────────────────────────
load_dotenv(PROJECT_ROOT / ".env")

# ── Logging ─────────────────────────────────────────────────────────────
LOG_LEVEL: str = os.getenv("WOUNDCARE_LOG_LEVEL", "INFO")
LOG_FILE: str = os.getenv("WOUNDCARE_LOG_FILE", "")             # empty = console only

# ── Policy selection ────────────────────────────────────────────────────
POLICY_LOOKAHEAD_DAYS: int = int(os.getenv("POLICY_LOOKAHEAD_DAYS", "90"))
POLICY_MIN_CONTENT_LENGTH: int = int(os.getenv("POLICY_MIN_CONTENT_LENGTH", "1000"))

# ── Telemetry ───────────────────────────────────────────────────────────
TELEMETRY_RECENT_LIMIT: int = int(os.getenv("TELEMETRY_RECENT_LIMIT", "100"))

"""
Conflict Engine Configuration
Single source of truth for policy constants & environment settings
"""
import os

# =========================
# Environment
# =========================

DATABASE_URL = os.getenv("DATABASE_URL")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
JSON_LOGS = os.getenv("JSON_LOGS", "false").lower() in ("1", "true", "yes")

# Domain requirement: a submission is checked within 10 seconds
DETECTION_TIMEOUT_SECONDS = float(os.getenv("DETECTION_TIMEOUT_SECONDS", "10"))

# Nightly re-evaluation of every active project (crontab syntax)
CONFLICT_SWEEP_CRON = os.getenv("CONFLICT_SWEEP_CRON", "30 2 * * *")

# =========================
# Policy constants (not user-configurable)
# =========================

# Physical safety margin around underground works
CONFLICT_BUFFER_METERS = 20.0

BATCH_GROUP_SIZE = 3
BATCH_GROUP_DELAY_MS = 100

MORATORIUM_MAX_YEARS = 5

ACTIVE_PROJECT_STATES = ("approved", "in_progress", "pending_approval")

# =========================
# Event dispatch
# =========================

DISPATCH_MAX_RETRIES = 3
DISPATCH_BASE_DELAY_SECONDS = 0.5

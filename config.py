"""
Reading Goals - Configuration
Limits, constants, and intervals
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# =============================================================================
# PATHS
# =============================================================================
PROJECT_ROOT = Path(__file__).parent
DATA_DIR = Path(os.getenv("READING_GOALS_DATA_DIR", str(PROJECT_ROOT / "data")))
LOGS_DIR = Path(os.getenv("READING_GOALS_LOGS_DIR", str(PROJECT_ROOT / "logs")))
DATABASE_PATH = DATA_DIR / "reading_goals.db"
DIAGNOSTIC_LOG_PATH = LOGS_DIR / "diagnostic.log"

# =============================================================================
# VERSION
# =============================================================================
VERSION = "0.1.0"
PROJECT_NAME = "Reading Goals"

# =============================================================================
# DATABASE CONFIGURATION
# =============================================================================
# busy_timeout bounds how long a transaction waits for the write lock before
# SQLite reports "database is locked" (surfaced as TransientStoreError).
DB_BUSY_TIMEOUT_MS = int(os.getenv("DB_BUSY_TIMEOUT_MS", "5000"))
DB_MAX_ATTEMPTS = int(os.getenv("DB_MAX_ATTEMPTS", "3"))
DB_RETRY_INITIAL_DELAY = 0.1
DB_RETRY_BACKOFF_MULTIPLIER = 2.0
DB_RETRY_MAX_DELAY = 2.0

# =============================================================================
# GOAL LIMITS
# =============================================================================
GOAL_NAME_MAX_LENGTH = 255
GOAL_TARGET_MIN = 1
GOAL_TARGET_MAX = 9999
GOAL_DURATION_MIN_DAYS = 1
GOAL_LIST_DEFAULT_PAGE_SIZE = 50
GOAL_LIST_MAX_PAGE_SIZE = 100

# =============================================================================
# EXPIRATION SWEEPER
# =============================================================================
# Eagerly flips overdue active goals to expired. Queries already report the
# effective status, so this only keeps the stored label fresh.
SWEEPER_ENABLED = os.getenv("SWEEPER_ENABLED", "true").lower() == "true"
SWEEPER_INTERVAL = float(os.getenv("SWEEPER_INTERVAL", "300"))  # 5 minutes

# =============================================================================
# LOGGING
# =============================================================================
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_TO_FILE = os.getenv("LOG_TO_FILE", "true").lower() == "true"
LOG_TO_CONSOLE = os.getenv("LOG_TO_CONSOLE", "true").lower() == "true"

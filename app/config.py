import os
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).resolve().parent.parent

# Database
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR}/teams.db")

# Identity (set by the upstream identity provider / gateway)
USER_ID_HEADER = "X-User-Id"

# Team records
TEAM_NAME_MAX_LENGTH = 50
TEAM_DESCRIPTION_MAX_LENGTH = 500

# Optimistic concurrency on Team documents
TEAM_WRITE_ATTEMPTS = int(os.getenv("TEAM_WRITE_ATTEMPTS", "5"))
TEAM_WRITE_BACKOFF_SECONDS = float(os.getenv("TEAM_WRITE_BACKOFF_SECONDS", "0.05"))

# Silent retries of dependent User writes before reporting a partial failure
MEMBERSHIP_WRITE_ATTEMPTS = int(os.getenv("MEMBERSHIP_WRITE_ATTEMPTS", "3"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

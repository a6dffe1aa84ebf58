"""
Application configuration.

Every setting comes from an environment variable with a development default,
so the app runs locally against a SQLite file with no setup. In production set
DATABASE_URL and SECRET_KEY explicitly.
"""

import os
import secrets

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./needsconnect.db")

# set to "1" to see every SQL statement
SQL_ECHO = os.getenv("SQL_ECHO", "0") == "1"

# A random key means sessions do not survive a restart; fine for development.
SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
SESSION_COOKIE = "session"
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", str(60 * 60 * 8)))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json")  # json | text

# Trust-based login: this username becomes a manager, everyone else a helper.
MANAGER_USERNAME = os.getenv("MANAGER_USERNAME", "admin")

# Deadlines further away than this add nothing to the urgency score.
DEADLINE_HORIZON_DAYS = int(os.getenv("DEADLINE_HORIZON_DAYS", "30"))

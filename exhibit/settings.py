import os

db_url = os.environ.get("DB_URL", "sqlite://:memory:")
mailer_ms_url = os.environ.get("MAILER_MS_URL", "http://localhost:8005")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

DEFAULT_TIMEZONE = os.environ.get("DEFAULT_TIMEZONE", "Europe/Rome")

HOLD_TTL_MINUTES = int(os.environ.get("HOLD_TTL_MINUTES", "10"))
CHECKIN_EARLY_MINUTES = int(os.environ.get("CHECKIN_EARLY_MINUTES", "15"))
CHECKIN_LATE_MINUTES = int(os.environ.get("CHECKIN_LATE_MINUTES", "0"))
OPTIONS_LOOKAHEAD_DAYS = int(os.environ.get("OPTIONS_LOOKAHEAD_DAYS", "2"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_JSON = os.environ.get("LOG_JSON", "").lower() in ("1", "true", "yes")

import os
import logging
import pytz
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in ("1", "true", "yes")


# Get database URL
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./floorcheck.db")
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

SQL_ECHO = _env_flag("SQL_ECHO")

# Compliance dashboard
DUE_SOON_THRESHOLD_DAYS = int(os.getenv("DUE_SOON_THRESHOLD_DAYS", "3"))

# Run policy: allow several operators on the same machine unless switched on
ONE_ACTIVE_RUN_PER_MACHINE = _env_flag("ONE_ACTIVE_RUN_PER_MACHINE")

# Only used for human readable timestamps, everything stored is UTC
SITE_TIMEZONE = pytz.timezone(os.getenv("SITE_TIMEZONE", "Europe/London"))

TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID", "").strip()

LOG_FILE = os.getenv("LOG_FILE")

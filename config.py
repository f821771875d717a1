"""
Runtime configuration for the MindBridge API.

Values come from the environment (a local .env file is loaded first).
"""
import os
import logging

from dotenv import load_dotenv

load_dotenv()


def _split_env(name: str, default: str = ""):
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "mindbridge")
CORS_ORIGINS = _split_env("CORS_ORIGINS", "*")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", 8000))
ADMIN_EMAILS = [e.lower() for e in _split_env("ADMIN_EMAILS")]

RECOMMENDATION_LIMIT = 6
RECOMMENDATION_MIN_SCORED = 3
MESSAGE_PREVIEW_LENGTH = 50
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200
MOOD_HISTORY_DAYS = 7
MAX_CIRCLE_TAGS = 5


def configure_logging() -> None:
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(LOG_LEVEL)
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(LOG_LEVEL)

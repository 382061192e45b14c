import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()

DEFAULT_IMAGE_MODEL = "gemini-2.5-flash-image"

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
IMAGE_MODEL = os.getenv("GEMINI_IMAGE_MODEL", DEFAULT_IMAGE_MODEL)
REQUEST_TIMEOUT_MS = 300_000
MAX_SESSIONS = int(os.getenv("NANOEDIT_MAX_SESSIONS", 256))

SECRET_KEY = os.getenv("FLASK_SECRET_KEY") or os.urandom(24).hex()
PORT = int(os.getenv("PORT", 5001))
LOG_LEVEL = os.getenv("NANOEDIT_LOG_LEVEL", "INFO").upper()


def configure_logging(level=None):
    """Attach a single stderr handler to the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level or LOG_LEVEL, logging.INFO))

    for handler in root.handlers:
        if isinstance(handler, logging.StreamHandler) and getattr(handler, "stream", None) is sys.stderr:
            break
    else:
        handler = logging.StreamHandler(stream=sys.stderr)
        root.addHandler(handler)

    handler.setFormatter(logging.Formatter(
        fmt="[%(asctime)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    ))
    return root

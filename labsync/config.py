"""Environment-driven settings for the upload, extraction and save paths."""
import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent
ENV_PATH = BASE_DIR / ".env"

load_dotenv(ENV_PATH, override=True)


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (ValueError, TypeError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (ValueError, TypeError):
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


API_BASE_URL = (os.getenv("API_BASE_URL") or "http://localhost:8000").strip().rstrip("/")
# The marker extractor is an external service; default to the same host
MARKER_EXTRACTION_URL = (os.getenv("MARKER_EXTRACTION_URL") or f"{API_BASE_URL}/api/pdf").strip()

UPLOAD_CHUNK_SIZE = _env_int("UPLOAD_CHUNK_SIZE", 1 * 1024 * 1024)
UPLOAD_MAX_FILE_MB = _env_int("UPLOAD_MAX_FILE_MB", 95)
PDF_MAX_FILE_MB = _env_int("PDF_MAX_FILE_MB", 10)
UPLOAD_ALLOWED_TYPES = _env_list("UPLOAD_ALLOWED_TYPES", ["*/*"])
UPLOAD_MAX_ATTEMPTS = _env_int("UPLOAD_MAX_ATTEMPTS", 3)
UPLOAD_RETRY_BASE_DELAY = _env_float("UPLOAD_RETRY_BASE_DELAY", 1.0)

HTTP_TIMEOUT_S = _env_float("HTTP_TIMEOUT_S", 30.0)
PDF_MAX_PAGES = _env_int("PDF_MAX_PAGES", 50)

CHUNK_RATE_LIMIT = (os.getenv("CHUNK_RATE_LIMIT") or "600/minute").strip()

CORS_ORIGINS = _env_list("CORS_ORIGINS", ["http://localhost:5173", "http://127.0.0.1:5173"])

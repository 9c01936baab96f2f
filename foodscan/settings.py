"""
Environment-driven configuration for the food scan backend.

Values are read once per ``load_settings`` call so that tests can tweak the
environment (or pass overrides to ``create_app``) without reloading modules.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(BASE_DIR / ".env")

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
ALLOWED_CONTENT_TYPES = ("image/jpeg", "image/png", "image/webp", "application/pdf")


def _safe_float(value: Optional[str], default: float) -> float:
  try:
    return float(value) if value is not None else default
  except (TypeError, ValueError):
    return default


def _safe_int(value: Optional[str], default: int) -> int:
  try:
    return int(value) if value is not None else default
  except (TypeError, ValueError):
    return default


def _optional_int(value: Optional[str]) -> Optional[int]:
  if value is None or not value.strip():
    return None
  try:
    return int(value)
  except ValueError:
    return None


def load_settings() -> Dict[str, Any]:
  """Return the Flask config mapping built from the environment."""
  secret_key = os.environ.get("SECRET_KEY", "dev-secret-change-me")
  return {
    "SECRET_KEY": secret_key,
    "JWT_SECRET_KEY": os.environ.get("JWT_SECRET_KEY", secret_key),
    "JWT_ALGORITHM": "HS256",
    # Seven days, matching the mobile client's session lifetime.
    "JWT_EXPIRATION_MINUTES": _safe_int(os.environ.get("JWT_EXPIRATION_MINUTES"), 7 * 24 * 60),
    "SQLITE_DB_PATH": os.environ.get("SQLITE_DB_PATH", str(BASE_DIR / "foodscan.db")),
    "SQLITE_TIMEOUT": _safe_float(os.environ.get("SQLITE_TIMEOUT"), 10.0),
    "UPLOADS_DIR": os.environ.get("UPLOADS_DIR", str(BASE_DIR / "uploads")),
    "STORAGE_BACKEND": os.environ.get("STORAGE_BACKEND", "local").strip().lower(),
    "AWS_BUCKET_NAME": os.environ.get("AWS_BUCKET_NAME", ""),
    "AWS_REGION": os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION"),
    "AWS_S3_ACL": os.environ.get("AWS_S3_ACL", "public-read").strip(),
    "MAX_UPLOAD_BYTES": _safe_int(os.environ.get("MAX_UPLOAD_BYTES"), MAX_UPLOAD_BYTES),
    "PASSWORD_MIN_LENGTH": _safe_int(os.environ.get("PASSWORD_MIN_LENGTH"), 8),
    "ANALYSIS_PROVIDER": os.environ.get("ANALYSIS_PROVIDER", "synthetic").strip().lower(),
    "ANALYSIS_SEED": _optional_int(os.environ.get("ANALYSIS_SEED")),
    "ANALYSIS_MIN_LATENCY": _safe_float(os.environ.get("ANALYSIS_MIN_LATENCY"), 1.0),
    "ANALYSIS_MAX_LATENCY": _safe_float(os.environ.get("ANALYSIS_MAX_LATENCY"), 3.0),
    "ML_SERVICE_URL": os.environ.get("ML_SERVICE_URL", "").strip(),
    "ML_SERVICE_API_KEY": os.environ.get("ML_SERVICE_API_KEY", "").strip() or None,
    "ML_SERVICE_TIMEOUT": _safe_int(os.environ.get("ML_SERVICE_TIMEOUT"), 30),
    "CORS_ORIGINS": os.environ.get("CORS_ORIGINS", "*"),
    "LOG_LEVEL": os.environ.get("LOG_LEVEL", "INFO").upper(),
  }


__all__ = ["ALLOWED_CONTENT_TYPES", "MAX_UPLOAD_BYTES", "load_settings"]

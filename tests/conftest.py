from __future__ import annotations

import io
from typing import Any, Dict

import pytest

from app import create_app
from foodscan.accounts import AccountStore
from foodscan.analysis import AnalysisOutcome
from foodscan.blob_store import LocalBlobStore
from foodscan.db import Database
from foodscan.scan_store import ScanStore

PASSWORD = "secret123456"


@pytest.fixture
def app_factory(tmp_path):
  def _make(**overrides: Any):
    config: Dict[str, Any] = {
      "TESTING": True,
      "SQLITE_DB_PATH": str(tmp_path / "foodscan.db"),
      "UPLOADS_DIR": str(tmp_path / "uploads"),
      "STORAGE_BACKEND": "local",
      "ANALYSIS_PROVIDER": "synthetic",
      "ANALYSIS_SEED": 7,
      "ANALYSIS_MIN_LATENCY": 0.0,
      "ANALYSIS_MAX_LATENCY": 0.0,
      "JWT_SECRET_KEY": "test-secret",
      "CORS_ORIGINS": "*",
    }
    config.update(overrides)
    return create_app(config)

  return _make


@pytest.fixture
def app(app_factory):
  return app_factory()


@pytest.fixture
def client(app):
  return app.test_client()


@pytest.fixture
def uploads_dir(tmp_path):
  return tmp_path / "uploads"


@pytest.fixture
def database(tmp_path):
  db = Database(tmp_path / "store.db")
  db.initialise()
  return db


@pytest.fixture
def account_store(database):
  return AccountStore(database, jwt_secret="unit-secret", password_min_length=8)


@pytest.fixture
def scan_store(database):
  return ScanStore(database)


@pytest.fixture
def blob_store(tmp_path):
  return LocalBlobStore(tmp_path / "blobs")


def make_outcome(score: int = 80, freshness: str = "Good", **overrides: Any) -> AnalysisOutcome:
  values: Dict[str, Any] = {
    "quality_score": score,
    "freshness": freshness,
    "nutritional_value": "Medium",
    "recommendations": ["Consume within 2-3 days for best quality"],
    "warnings": [],
    "processing_time": 12,
    "model_version": "1.0.0",
    "confidence": 0.9,
  }
  values.update(overrides)
  return AnalysisOutcome(**values)


def register(client, email: str = "alice@example.com", name: str = "Alice") -> Dict[str, str]:
  """Register an account through the API and return its auth headers."""
  response = client.post(
    "/api/auth/register",
    json={"name": name, "email": email, "password": PASSWORD},
  )
  assert response.status_code == 201, response.get_json()
  return {"Authorization": f"Bearer {response.get_json()['token']}"}


def upload(client, headers, data: bytes = b"\xff\xd8\xff\xe0fake-jpeg", content_type: str = "image/jpeg",
           filename: str = "meal.jpg"):
  return client.post(
    "/api/scan/analyze",
    headers=headers,
    data={"file": (io.BytesIO(data), filename, content_type)},
    content_type="multipart/form-data",
  )

"""
Analysis provider backed by an external machine-learning inference service.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Optional

import requests

from foodscan.analysis import AnalysisOutcome, AnalysisProvider
from foodscan.errors import AnalysisFailed
from foodscan.image_metadata import extract_metadata

logger = logging.getLogger(__name__)


class RemoteAnalysisProvider(AnalysisProvider):
  """
  Send the stored file (and extracted image metadata) to the remote ML API.

  Parameters
  ----------
  url:
      Fully-qualified endpoint for the ML service prediction REST API.
  api_key:
      Optional bearer token injected as ``Authorization`` header.
  timeout:
      Request timeout in seconds; keeps the upload request bounded.
  """

  def __init__(self, url: str, *, api_key: Optional[str] = None, timeout: int = 30) -> None:
    if not url:
      raise RuntimeError("ML_SERVICE_URL must be set when ANALYSIS_PROVIDER=remote.")
    self.url = url
    self.api_key = api_key
    self.timeout = timeout

  def analyze(self, image_bytes: bytes, content_type: str) -> AnalysisOutcome:
    files = {
      "file": ("upload", image_bytes, content_type),
    }
    data = {
      "metadata": json.dumps(extract_metadata(image_bytes, content_type)),
    }
    headers = {}
    if self.api_key:
      headers["Authorization"] = f"Bearer {self.api_key}"

    started = time.monotonic()
    try:
      response = requests.post(self.url, files=files, data=data, headers=headers, timeout=self.timeout)
    except requests.RequestException as exc:
      logger.warning("ML service request failed: %s", exc)
      raise AnalysisFailed("Analysis service is unavailable.") from exc

    if not response.ok:
      logger.warning("ML service responded with %s: %s", response.status_code, response.text[:200])
      raise AnalysisFailed("Analysis service returned an error.")

    try:
      payload = response.json()
    except ValueError as exc:
      raise AnalysisFailed("Analysis service did not return JSON.") from exc
    if not isinstance(payload, dict):
      raise AnalysisFailed("Analysis service returned an invalid result.")

    body = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    metadata = body.setdefault("analysisMetadata", {})
    if isinstance(metadata, dict):
      metadata.setdefault("processingTime", int((time.monotonic() - started) * 1000))
    return AnalysisOutcome.from_mapping(body)


__all__ = ["RemoteAnalysisProvider"]

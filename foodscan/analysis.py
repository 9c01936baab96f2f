"""
Food analysis providers.

The scan service only depends on ``AnalysisProvider.analyze``. The synthetic
provider below fabricates a plausible result (there is no trained model
behind it); the remote provider in ``foodscan.ml_service`` forwards the image
to an external inference API and can replace it without touching the stores.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from foodscan.errors import AnalysisFailed

logger = logging.getLogger(__name__)

FRESHNESS_LEVELS = ("Excellent", "Good", "Fair", "Poor")
NUTRITION_LEVELS = ("High", "Medium", "Low")
DEFAULT_MODEL_VERSION = "1.0.0"


@dataclass(frozen=True)
class AnalysisOutcome:
  """Structured result of analysing one uploaded file."""

  quality_score: int
  freshness: str
  nutritional_value: str
  recommendations: List[str] = field(default_factory=list)
  warnings: List[str] = field(default_factory=list)
  processing_time: int = 0
  model_version: str = DEFAULT_MODEL_VERSION
  confidence: float = 1.0

  def __post_init__(self) -> None:
    if isinstance(self.quality_score, bool) or not isinstance(self.quality_score, int):
      raise ValueError("quality_score must be an integer")
    if not 0 <= self.quality_score <= 100:
      raise ValueError("quality_score must be between 0 and 100")
    if self.freshness not in FRESHNESS_LEVELS:
      raise ValueError(f"unknown freshness level {self.freshness!r}")
    if self.nutritional_value not in NUTRITION_LEVELS:
      raise ValueError(f"unknown nutritional value {self.nutritional_value!r}")
    if not 0.0 <= float(self.confidence) <= 1.0:
      raise ValueError("confidence must be between 0 and 1")
    if self.processing_time < 0:
      raise ValueError("processing_time cannot be negative")

  @classmethod
  def from_mapping(cls, raw: Mapping[str, Any]) -> "AnalysisOutcome":
    """
    Build an outcome from a JSON payload using the mobile client's field names.

    Raises ``AnalysisFailed`` when a field is missing or out of range.
    """
    metadata = raw.get("analysisMetadata") or {}
    try:
      return cls(
        quality_score=int(raw["qualityScore"]),
        freshness=str(raw["freshness"]),
        nutritional_value=str(raw["nutritionalValue"]),
        recommendations=[str(item).strip() for item in raw.get("recommendations") or []],
        warnings=[str(item).strip() for item in raw.get("warnings") or []],
        processing_time=int(metadata.get("processingTime", 0)),
        model_version=str(metadata.get("modelVersion") or DEFAULT_MODEL_VERSION),
        confidence=float(metadata.get("confidence", 1.0)),
      )
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
      raise AnalysisFailed("Analysis service returned an invalid result.") from exc

  def to_dict(self) -> Dict[str, Any]:
    return asdict(self)


class AnalysisProvider:
  """Turns stored file bytes into an ``AnalysisOutcome``."""

  def analyze(self, image_bytes: bytes, content_type: str) -> AnalysisOutcome:
    raise NotImplementedError


_RECOMMENDATIONS = [
  "Store in refrigerator to maintain freshness",
  "Consume within 2-3 days for best quality",
  "Rich in vitamins and minerals",
  "Good source of dietary fiber",
  "Low in saturated fats",
]

_WARNINGS = [
  "Check for signs of spoilage before consumption",
  "May contain allergens - check ingredients",
]


class SyntheticAnalysisProvider(AnalysisProvider):
  """
  Return a randomised analysis that mimics the shape of a real model's output.

  Pass ``seed`` for reproducible results. ``min_latency``/``max_latency``
  (seconds) simulate inference time; set both to zero to skip the sleep.
  """

  def __init__(
    self,
    seed: Optional[int] = None,
    *,
    min_latency: float = 1.0,
    max_latency: float = 3.0,
    model_version: str = DEFAULT_MODEL_VERSION,
  ) -> None:
    self._random = random.Random(seed)
    self.min_latency = max(0.0, min_latency)
    self.max_latency = max(self.min_latency, max_latency)
    self.model_version = model_version

  def analyze(self, image_bytes: bytes, content_type: str) -> AnalysisOutcome:
    if not image_bytes:
      raise AnalysisFailed("Empty file received.")

    started = time.monotonic()
    if self.max_latency > 0:
      time.sleep(self._random.uniform(self.min_latency, self.max_latency))

    rng = self._random
    warnings: List[str] = []
    if rng.random() > 0.7:
      warnings = _WARNINGS[: rng.randint(1, len(_WARNINGS))]

    outcome = AnalysisOutcome(
      quality_score=rng.randint(60, 99),
      freshness=rng.choice(FRESHNESS_LEVELS),
      nutritional_value=rng.choice(NUTRITION_LEVELS),
      recommendations=rng.sample(_RECOMMENDATIONS, 3),
      warnings=warnings,
      processing_time=int((time.monotonic() - started) * 1000),
      model_version=self.model_version,
      confidence=round(rng.uniform(0.7, 1.0), 2),
    )
    logger.info(
      "Synthetic analysis of %d byte %s: score=%d freshness=%s",
      len(image_bytes),
      content_type,
      outcome.quality_score,
      outcome.freshness,
    )
    return outcome


__all__ = [
  "AnalysisOutcome",
  "AnalysisProvider",
  "DEFAULT_MODEL_VERSION",
  "FRESHNESS_LEVELS",
  "NUTRITION_LEVELS",
  "SyntheticAnalysisProvider",
]

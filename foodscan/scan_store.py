"""
Persistence of scan records.

Every query is scoped to the owning account. A record that exists but belongs
to another account is reported exactly like a missing one, so callers can
never learn about somebody else's scans.
"""

from __future__ import annotations

import json
import logging
import math
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from foodscan.analysis import FRESHNESS_LEVELS, AnalysisOutcome
from foodscan.db import Database
from foodscan.errors import InvalidInput, NotFound, UnsupportedType
from foodscan.settings import ALLOWED_CONTENT_TYPES, MAX_UPLOAD_BYTES

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
STATS_MONTHS = 6

SCORE_BANDS = (
  ("excellent", 90, 100),
  ("good", 70, 89),
  ("fair", 50, 69),
  ("poor", 0, 49),
)


def _utcnow_iso() -> str:
  return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _parse_int(raw: Any, name: str) -> Optional[int]:
  if raw is None or (isinstance(raw, str) and not raw.strip()):
    return None
  try:
    return int(str(raw).strip())
  except ValueError as exc:
    raise InvalidInput(f"{name} must be an integer.") from exc


def parse_page(raw_page: Any, raw_limit: Any) -> Tuple[int, int]:
  """Return ``(page, limit)`` from query values, applying the defaults."""
  page = _parse_int(raw_page, "page")
  limit = _parse_int(raw_limit, "limit")
  page = 1 if page is None else page
  limit = DEFAULT_PAGE_SIZE if limit is None else limit
  if page < 1:
    raise InvalidInput("page must be 1 or greater.")
  if not 1 <= limit <= MAX_PAGE_SIZE:
    raise InvalidInput(f"limit must be between 1 and {MAX_PAGE_SIZE}.")
  return page, limit


def page_count(total: int, page_size: int) -> int:
  return math.ceil(total / page_size) if page_size else 0


@dataclass(frozen=True)
class ScanFilter:
  """History filter; unset fields do not constrain the result."""

  freshness: Optional[str] = None
  min_score: Optional[int] = None
  max_score: Optional[int] = None

  def __post_init__(self) -> None:
    if self.freshness is not None and self.freshness not in FRESHNESS_LEVELS:
      raise InvalidInput(f"freshness must be one of: {', '.join(FRESHNESS_LEVELS)}.")
    for name, value in (("minScore", self.min_score), ("maxScore", self.max_score)):
      if value is not None and not 0 <= value <= 100:
        raise InvalidInput(f"{name} must be between 0 and 100.")
    if self.min_score is not None and self.max_score is not None and self.min_score > self.max_score:
      raise InvalidInput("minScore cannot be greater than maxScore.")

  @classmethod
  def from_query(cls, args: Mapping[str, Any]) -> "ScanFilter":
    raw_freshness = (args.get("freshness") or "").strip()
    freshness = None
    if raw_freshness:
      freshness = next(
        (level for level in FRESHNESS_LEVELS if level.lower() == raw_freshness.lower()),
        raw_freshness,
      )
    return cls(
      freshness=freshness,
      min_score=_parse_int(args.get("minScore"), "minScore"),
      max_score=_parse_int(args.get("maxScore"), "maxScore"),
    )

  def to_sql(self) -> Tuple[str, List[Any]]:
    """Return the SQL conditions (joined with AND) and their parameters."""
    clauses: List[str] = []
    params: List[Any] = []
    if self.freshness is not None:
      clauses.append("freshness = ?")
      params.append(self.freshness)
    if self.min_score is not None:
      clauses.append("quality_score >= ?")
      params.append(self.min_score)
    if self.max_score is not None:
      clauses.append("quality_score <= ?")
      params.append(self.max_score)
    return " AND ".join(clauses), params


@dataclass(frozen=True)
class ScanRecord:
  id: str
  user_id: str
  file_name: str
  file_type: str
  blob_name: str
  file_size: int
  analysis_date: str
  quality_score: int
  freshness: str
  nutritional_value: str
  recommendations: List[str]
  warnings: List[str]
  processing_time: int
  model_version: str
  confidence: float
  created_at: str

  @classmethod
  def from_row(cls, row: sqlite3.Row) -> "ScanRecord":
    return cls(
      id=row["id"],
      user_id=row["user_id"],
      file_name=row["file_name"],
      file_type=row["file_type"],
      blob_name=row["blob_name"],
      file_size=row["file_size"],
      analysis_date=row["analysis_date"],
      quality_score=row["quality_score"],
      freshness=row["freshness"],
      nutritional_value=row["nutritional_value"],
      recommendations=json.loads(row["recommendations"] or "[]"),
      warnings=json.loads(row["warnings"] or "[]"),
      processing_time=row["processing_time"],
      model_version=row["model_version"],
      confidence=row["confidence"],
      created_at=row["created_at"],
    )

  def to_public_dict(self, access_path: Callable[[str], str]) -> Dict[str, Any]:
    """Client view of the record; the blob name only appears as ``fileUrl``."""
    return {
      "id": self.id,
      "fileName": self.file_name,
      "fileType": self.file_type,
      "fileSize": self.file_size,
      "fileUrl": access_path(self.blob_name),
      "analysisDate": self.analysis_date,
      "qualityScore": self.quality_score,
      "freshness": self.freshness,
      "nutritionalValue": self.nutritional_value,
      "recommendations": list(self.recommendations),
      "warnings": list(self.warnings),
      "analysisMetadata": {
        "processingTime": self.processing_time,
        "modelVersion": self.model_version,
        "confidence": self.confidence,
      },
      "createdAt": self.created_at,
    }


def _trailing_months(now: datetime, count: int = STATS_MONTHS) -> List[str]:
  """Return ``YYYY-MM`` keys for the ``count`` months ending with ``now``'s month."""
  year, month = now.year, now.month
  keys = []
  for _ in range(count):
    keys.append(f"{year:04d}-{month:02d}")
    month -= 1
    if month == 0:
      year, month = year - 1, 12
  return list(reversed(keys))


class ScanStore:
  """SQLite-backed, owner-scoped store of scan records."""

  def __init__(self, database: Database, max_file_size: int = MAX_UPLOAD_BYTES) -> None:
    self.database = database
    self.max_file_size = max_file_size

  def create(
    self,
    owner_id: str,
    *,
    file_name: str,
    file_type: str,
    file_size: int,
    outcome: AnalysisOutcome,
    blob_name: str,
  ) -> ScanRecord:
    """Persist one analysed upload; the insert is a single transaction."""
    if file_type not in ALLOWED_CONTENT_TYPES:
      raise UnsupportedType()
    if not 0 <= file_size <= self.max_file_size:
      raise InvalidInput("File size is out of range.")

    now = _utcnow_iso()
    record = ScanRecord(
      id=uuid.uuid4().hex,
      user_id=owner_id,
      file_name=(file_name or "upload").strip()[:255] or "upload",
      file_type=file_type,
      blob_name=blob_name,
      file_size=file_size,
      analysis_date=now,
      quality_score=outcome.quality_score,
      freshness=outcome.freshness,
      nutritional_value=outcome.nutritional_value,
      recommendations=list(outcome.recommendations),
      warnings=list(outcome.warnings),
      processing_time=outcome.processing_time,
      model_version=outcome.model_version,
      confidence=float(outcome.confidence),
      created_at=now,
    )
    try:
      with self.database.transaction() as conn:
        conn.execute(
          """
          INSERT INTO scans (
            id, user_id, file_name, file_type, blob_name, file_size, analysis_date,
            quality_score, freshness, nutritional_value, recommendations, warnings,
            processing_time, model_version, confidence, created_at
          )
          VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
          """,
          (
            record.id,
            record.user_id,
            record.file_name,
            record.file_type,
            record.blob_name,
            record.file_size,
            record.analysis_date,
            record.quality_score,
            record.freshness,
            record.nutritional_value,
            json.dumps(record.recommendations),
            json.dumps(record.warnings),
            record.processing_time,
            record.model_version,
            record.confidence,
            record.created_at,
          ),
        )
    except sqlite3.IntegrityError as exc:
      # The only foreign key is the owner; an account deleted mid-upload lands here.
      raise NotFound("User not found.") from exc
    return record

  def list(
    self,
    owner_id: str,
    filters: Optional[ScanFilter] = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
  ) -> Tuple[List[ScanRecord], int]:
    """Return one page of the owner's records, newest first, and the match count."""
    if page < 1 or page_size < 1:
      raise InvalidInput("page and limit must be 1 or greater.")
    condition, params = (filters or ScanFilter()).to_sql()
    where = "user_id = ?" + (f" AND {condition}" if condition else "")
    where_params = [owner_id, *params]

    offset = (page - 1) * page_size

    with self.database.transaction() as conn:
      total = conn.execute(f"SELECT COUNT(*) FROM scans WHERE {where}", where_params).fetchone()[0]
      # Pages past the end are empty; their offset may not even fit in an SQLite integer.
      if offset >= total:
        return [], total
      rows = conn.execute(
        f"""
        SELECT * FROM scans
        WHERE {where}
        ORDER BY created_at DESC, id DESC
        LIMIT ? OFFSET ?
        """,
        [*where_params, page_size, offset],
      ).fetchall()
    return [ScanRecord.from_row(row) for row in rows], total

  def get(self, owner_id: str, record_id: str) -> ScanRecord:
    with self.database.transaction() as conn:
      row = conn.execute(
        "SELECT * FROM scans WHERE id = ? AND user_id = ?",
        (record_id, owner_id),
      ).fetchone()
    if row is None:
      raise NotFound("Scan not found.")
    return ScanRecord.from_row(row)

  def delete(self, owner_id: str, record_id: str) -> ScanRecord:
    """Remove the record and return it so the caller can release its blob."""
    with self.database.transaction(immediate=True) as conn:
      row = conn.execute(
        "SELECT * FROM scans WHERE id = ? AND user_id = ?",
        (record_id, owner_id),
      ).fetchone()
      if row is None:
        raise NotFound("Scan not found.")
      conn.execute("DELETE FROM scans WHERE id = ?", (record_id,))
    return ScanRecord.from_row(row)

  def delete_all_for_owner(self, conn: sqlite3.Connection, owner_id: str) -> List[str]:
    """Delete every record of ``owner_id`` on an open transaction; return their blob names."""
    blob_names = [
      row["blob_name"]
      for row in conn.execute("SELECT blob_name FROM scans WHERE user_id = ?", (owner_id,))
    ]
    conn.execute("DELETE FROM scans WHERE user_id = ?", (owner_id,))
    return blob_names

  def stats(self, owner_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Aggregate the owner's history for the profile screen."""
    months = _trailing_months(now or datetime.now(timezone.utc))
    band_case = " ".join(
      f"WHEN quality_score >= {low} THEN '{name}'" for name, low, _ in SCORE_BANDS[:-1]
    )

    with self.database.transaction() as conn:
      total, average = conn.execute(
        "SELECT COUNT(*), AVG(quality_score) FROM scans WHERE user_id = ?",
        (owner_id,),
      ).fetchone()
      latest = conn.execute(
        """
        SELECT analysis_date FROM scans WHERE user_id = ?
        ORDER BY created_at DESC, id DESC LIMIT 1
        """,
        (owner_id,),
      ).fetchone()
      freshness_rows = conn.execute(
        "SELECT freshness, COUNT(*) FROM scans WHERE user_id = ? GROUP BY freshness",
        (owner_id,),
      ).fetchall()
      band_rows = conn.execute(
        f"""
        SELECT CASE {band_case} ELSE 'poor' END AS band, COUNT(*)
        FROM scans WHERE user_id = ? GROUP BY band
        """,
        (owner_id,),
      ).fetchall()
      month_rows = conn.execute(
        """
        SELECT substr(created_at, 1, 7) AS month, COUNT(*)
        FROM scans WHERE user_id = ? AND created_at >= ? GROUP BY month
        """,
        (owner_id, f"{months[0]}-01"),
      ).fetchall()

    freshness_counts = {level: 0 for level in FRESHNESS_LEVELS}
    freshness_counts.update({level: count for level, count in freshness_rows})
    quality_ranges = {name: 0 for name, _, _ in SCORE_BANDS}
    quality_ranges.update({band: count for band, count in band_rows})
    monthly = {month: 0 for month in months}
    monthly.update({month: count for month, count in month_rows if month in monthly})

    return {
      "totalScans": total,
      # Half-up rounding, 0 when there is nothing to average.
      "averageScore": int(math.floor(average + 0.5)) if average is not None else 0,
      "lastScanDate": latest["analysis_date"] if latest else None,
      "freshnessCounts": freshness_counts,
      "qualityRanges": quality_ranges,
      "monthlyScans": monthly,
    }


__all__ = [
  "DEFAULT_PAGE_SIZE",
  "ScanFilter",
  "ScanRecord",
  "ScanStore",
  "page_count",
  "parse_page",
]

"""
Scan workflows that span the blob store and the record store.

There is no shared transaction between the two stores, so consistency is
kept procedurally: the blob is written before the record and removed again
if analysis or the insert fails; the record is deleted before the blob, and
a blob that cannot be removed afterwards is logged as a reclaimable leak.
"""

from __future__ import annotations

import logging
from typing import IO, Any, Iterable, Optional

from foodscan.accounts import AccountStore
from foodscan.analysis import AnalysisProvider
from foodscan.blob_store import BlobStore
from foodscan.errors import AnalysisFailed, ScanServiceError
from foodscan.scan_store import ScanRecord, ScanStore

logger = logging.getLogger(__name__)


class ScanService:
  def __init__(
    self,
    accounts: AccountStore,
    scans: ScanStore,
    blobs: BlobStore,
    analyzer: AnalysisProvider,
  ) -> None:
    self.accounts = accounts
    self.scans = scans
    self.blobs = blobs
    self.analyzer = analyzer

  def _discard_blob(self, blob_name: str) -> None:
    try:
      self.blobs.delete(blob_name)
    except Exception:
      logger.exception("Orphaned blob %s could not be removed", blob_name)

  def analyze_upload(
    self,
    owner_id: str,
    *,
    file_name: str,
    stream: IO[bytes],
    content_type: str,
    declared_size: Optional[int] = None,
  ) -> ScanRecord:
    """Store the upload, analyse it and persist the resulting scan record."""
    blob_name = self.blobs.accept(stream, content_type, declared_size)
    try:
      image_bytes = self.blobs.read(blob_name)
      try:
        outcome = self.analyzer.analyze(image_bytes, content_type)
      except ScanServiceError:
        raise
      except Exception as exc:
        logger.exception("Analysis provider crashed for blob %s", blob_name)
        raise AnalysisFailed() from exc
      record = self.scans.create(
        owner_id,
        file_name=file_name,
        file_type=content_type,
        file_size=len(image_bytes),
        outcome=outcome,
        blob_name=blob_name,
      )
    except BaseException:
      self._discard_blob(blob_name)
      raise

    logger.info("Created scan %s for account %s", record.id, owner_id)
    return record

  def delete_scan(self, owner_id: str, record_id: str) -> ScanRecord:
    """Delete the record, then its blob; a blob failure does not undo the delete."""
    record = self.scans.delete(owner_id, record_id)
    try:
      self.blobs.delete(record.blob_name)
    except Exception:
      logger.warning(
        "Scan %s deleted but blob %s could not be removed",
        record.id,
        record.blob_name,
        exc_info=True,
      )
    return record

  def delete_account(self, account_id: str, password: Any) -> int:
    """Delete the account with all of its scans; return how many scans went with it."""
    blob_names = self.accounts.delete_account(account_id, password, self.scans)
    self._release_blobs(blob_names)
    return len(blob_names)

  def _release_blobs(self, blob_names: Iterable[str]) -> None:
    failed = 0
    for blob_name in blob_names:
      try:
        self.blobs.delete(blob_name)
      except Exception:
        failed += 1
        logger.warning("Blob %s could not be removed", blob_name, exc_info=True)
    if failed:
      logger.warning("%d blob(s) left behind after account deletion", failed)


__all__ = ["ScanService"]

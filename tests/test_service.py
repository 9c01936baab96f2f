from __future__ import annotations

import io
import logging
from unittest import mock

import pytest

from foodscan.analysis import AnalysisProvider, SyntheticAnalysisProvider
from foodscan.blob_store import LocalBlobStore
from foodscan.errors import AnalysisFailed, InvalidInput, NotFound, UnsupportedType
from foodscan.service import ScanService


class FailingProvider(AnalysisProvider):
  def __init__(self, error):
    self.error = error

  def analyze(self, image_bytes, content_type):
    raise self.error


class StubbornBlobStore(LocalBlobStore):
  """Accepts blobs normally but refuses to delete them."""

  def delete(self, blob_name):
    raise OSError("disk is read-only")


@pytest.fixture
def alice(account_store):
  return account_store.register("Alice", "alice@example.com", "secret123456")


def _service(account_store, scan_store, blobs, analyzer=None):
  return ScanService(
    account_store,
    scan_store,
    blobs,
    analyzer or SyntheticAnalysisProvider(5, min_latency=0, max_latency=0),
  )


def _upload(service, owner_id, data=b"\xff\xd8\xffjpeg", content_type="image/jpeg"):
  return service.analyze_upload(
    owner_id,
    file_name="../../etc/passwd.jpg",
    stream=io.BytesIO(data),
    content_type=content_type,
    declared_size=len(data),
  )


def test_analyze_upload_links_record_and_blob(account_store, scan_store, blob_store, alice):
  service = _service(account_store, scan_store, blob_store)

  record = _upload(service, alice.id)

  assert blob_store.exists(record.blob_name)
  assert record.file_size == len(b"\xff\xd8\xffjpeg")
  assert record.file_name == "../../etc/passwd.jpg"
  assert "passwd" not in record.blob_name
  assert scan_store.get(alice.id, record.id).blob_name == record.blob_name


def test_unsupported_type_is_rejected_before_storage(account_store, scan_store, blob_store, alice):
  service = _service(account_store, scan_store, blob_store)

  with pytest.raises(UnsupportedType):
    _upload(service, alice.id, content_type="text/plain")

  assert list(blob_store.root.iterdir()) == []
  assert scan_store.list(alice.id)[1] == 0


@pytest.mark.parametrize("error", [AnalysisFailed("model offline"), RuntimeError("boom")])
def test_analysis_failure_removes_the_blob(account_store, scan_store, blob_store, alice, error):
  service = _service(account_store, scan_store, blob_store, FailingProvider(error))

  with pytest.raises(AnalysisFailed):
    _upload(service, alice.id)

  assert list(blob_store.root.iterdir()) == []
  assert scan_store.list(alice.id)[1] == 0


def test_record_failure_removes_the_blob(account_store, scan_store, blob_store):
  service = _service(account_store, scan_store, blob_store)

  with pytest.raises(NotFound):
    _upload(service, "account-deleted-mid-upload")

  assert list(blob_store.root.iterdir()) == []


def test_delete_scan_removes_record_and_blob(account_store, scan_store, blob_store, alice):
  service = _service(account_store, scan_store, blob_store)
  record = _upload(service, alice.id)

  service.delete_scan(alice.id, record.id)

  assert not blob_store.exists(record.blob_name)
  with pytest.raises(NotFound):
    scan_store.get(alice.id, record.id)


def test_blob_failure_after_record_delete_is_logged_not_raised(account_store, scan_store, tmp_path, alice, caplog):
  blobs = StubbornBlobStore(tmp_path / "stubborn")
  service = _service(account_store, scan_store, blobs)
  record = _upload(service, alice.id)

  with caplog.at_level(logging.WARNING, logger="foodscan.service"):
    deleted = service.delete_scan(alice.id, record.id)

  assert deleted.id == record.id
  with pytest.raises(NotFound):
    scan_store.get(alice.id, record.id)
  assert record.blob_name in caplog.text


def test_delete_account_cascades_to_blobs(account_store, scan_store, blob_store, alice):
  bob = account_store.register("Bob", "bob@example.com", "secret123456")
  service = _service(account_store, scan_store, blob_store)
  alice_records = [_upload(service, alice.id) for _ in range(3)]
  bob_record = _upload(service, bob.id)

  assert service.delete_account(alice.id, "secret123456") == 3

  assert all(not blob_store.exists(record.blob_name) for record in alice_records)
  assert blob_store.exists(bob_record.blob_name)
  with pytest.raises(NotFound):
    account_store.get(alice.id)


def test_empty_upload_never_reaches_storage_or_analysis(account_store, scan_store, blob_store, alice):
  analyzer = mock.Mock(spec=AnalysisProvider)
  service = _service(account_store, scan_store, blob_store, analyzer)

  with pytest.raises(InvalidInput):
    _upload(service, alice.id, data=b"")

  analyzer.analyze.assert_not_called()
  assert list(blob_store.root.iterdir()) == []

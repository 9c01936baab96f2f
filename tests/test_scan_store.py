from __future__ import annotations

from datetime import datetime, timezone

import pytest

from conftest import make_outcome
from foodscan.errors import InvalidInput, NotFound, UnsupportedType
from foodscan.scan_store import ScanFilter, page_count, parse_page

SCORES = [95, 91, 89, 80, 70, 69, 55, 50, 49, 10, 75, 88]
FRESHNESS = ["Excellent", "Good", "Good", "Fair", "Good", "Poor", "Fair", "Good", "Poor", "Poor", "Excellent", "Good"]


@pytest.fixture
def owners(account_store):
  alice = account_store.register("Alice", "alice@example.com", "secret123456")
  bob = account_store.register("Bob", "bob@example.com", "secret123456")
  return alice, bob


@pytest.fixture
def alice_records(scan_store, owners):
  alice, _ = owners
  return [
    scan_store.create(
      alice.id,
      file_name=f"meal-{index}.jpg",
      file_type="image/jpeg",
      file_size=1000 + index,
      outcome=make_outcome(score, freshness),
      blob_name=f"blob-{index}",
    )
    for index, (score, freshness) in enumerate(zip(SCORES, FRESHNESS))
  ]


def _newest_first(records):
  return sorted(records, key=lambda record: (record.created_at, record.id), reverse=True)


def _all_pages(scan_store, owner_id, filters, page_size):
  first, total = scan_store.list(owner_id, filters, 1, page_size)
  collected = list(first)
  for page in range(2, page_count(total, page_size) + 1):
    collected.extend(scan_store.list(owner_id, filters, page, page_size)[0])
  return collected, total


def test_create_rejects_unknown_owner(scan_store):
  with pytest.raises(NotFound):
    scan_store.create(
      "missing-owner",
      file_name="a.jpg",
      file_type="image/jpeg",
      file_size=1,
      outcome=make_outcome(),
      blob_name="blob-x",
    )


def test_create_rejects_unsupported_type_and_oversize(scan_store, owners):
  alice, _ = owners
  with pytest.raises(UnsupportedType):
    scan_store.create(alice.id, file_name="a.gif", file_type="image/gif", file_size=1,
                      outcome=make_outcome(), blob_name="blob-gif")
  with pytest.raises(InvalidInput):
    scan_store.create(alice.id, file_name="a.jpg", file_type="image/jpeg", file_size=10 * 1024 * 1024 + 1,
                      outcome=make_outcome(), blob_name="blob-big")


def test_outcome_ranges_are_enforced():
  with pytest.raises(ValueError):
    make_outcome(score=101)
  with pytest.raises(ValueError):
    make_outcome(freshness="Rotten")
  with pytest.raises(ValueError):
    make_outcome(confidence=1.5)


def test_score_range_filter_is_inclusive(scan_store, owners, alice_records):
  alice, _ = owners
  records, total = scan_store.list(alice.id, ScanFilter(min_score=70, max_score=89), 1, 100)

  expected = {record.id for record in alice_records if 70 <= record.quality_score <= 89}
  assert {record.id for record in records} == expected
  assert total == len(expected) == 5


def test_filters_combine_conjunctively(scan_store, owners, alice_records):
  alice, _ = owners
  records, total = scan_store.list(alice.id, ScanFilter(freshness="Good", min_score=70, max_score=89), 1, 100)

  expected = {
    record.id for record in alice_records
    if record.freshness == "Good" and 70 <= record.quality_score <= 89
  }
  assert {record.id for record in records} == expected
  assert total == 3


def test_single_bound_filters(scan_store, owners, alice_records):
  alice, _ = owners
  at_least, _ = scan_store.list(alice.id, ScanFilter(min_score=90), 1, 100)
  at_most, _ = scan_store.list(alice.id, ScanFilter(max_score=49), 1, 100)

  assert sorted(record.quality_score for record in at_least) == [91, 95]
  assert sorted(record.quality_score for record in at_most) == [10, 49]


@pytest.mark.parametrize("page_size", [1, 3, 5, 10, 12, 50])
def test_pages_are_complete_and_non_overlapping(scan_store, owners, alice_records, page_size):
  alice, _ = owners
  collected, total = _all_pages(scan_store, alice.id, ScanFilter(), page_size)

  assert total == len(alice_records)
  assert [record.id for record in collected] == [record.id for record in _newest_first(alice_records)]


def test_filtered_pages_keep_order(scan_store, owners, alice_records):
  alice, _ = owners
  filters = ScanFilter(min_score=50)
  collected, total = _all_pages(scan_store, alice.id, filters, 4)

  expected = _newest_first([record for record in alice_records if record.quality_score >= 50])
  assert [record.id for record in collected] == [record.id for record in expected]
  assert total == len(expected)


def test_page_past_the_end_is_empty(scan_store, owners, alice_records):
  alice, _ = owners
  records, total = scan_store.list(alice.id, ScanFilter(), 99, 10)

  assert records == []
  assert total == len(alice_records)


def test_ownership_isolation(scan_store, owners, alice_records):
  alice, bob = owners
  target = alice_records[0]

  assert scan_store.list(bob.id)[1] == 0
  with pytest.raises(NotFound) as lookup:
    scan_store.get(bob.id, target.id)
  with pytest.raises(NotFound) as removal:
    scan_store.delete(bob.id, target.id)
  with pytest.raises(NotFound) as missing:
    scan_store.get(bob.id, "does-not-exist")

  assert lookup.value.to_dict() == missing.value.to_dict() == removal.value.to_dict()
  assert scan_store.get(alice.id, target.id).id == target.id


def test_delete_returns_the_record(scan_store, owners, alice_records):
  alice, _ = owners
  deleted = scan_store.delete(alice.id, alice_records[3].id)

  assert deleted.blob_name == "blob-3"
  with pytest.raises(NotFound):
    scan_store.get(alice.id, alice_records[3].id)
  with pytest.raises(NotFound):
    scan_store.delete(alice.id, alice_records[3].id)


def test_public_view_hides_blob_name(scan_store, owners, alice_records):
  view = alice_records[0].to_public_dict(lambda name: f"/uploads/{name}")

  assert view["fileUrl"] == "/uploads/blob-0"
  assert "blob_name" not in view and "blobName" not in view
  assert view["analysisMetadata"] == {"processingTime": 12, "modelVersion": "1.0.0", "confidence": 0.9}
  assert view["recommendations"] == ["Consume within 2-3 days for best quality"]


def test_stats_for_empty_history(scan_store, owners):
  alice, _ = owners
  stats = scan_store.stats(alice.id)

  assert stats["totalScans"] == 0
  assert stats["averageScore"] == 0
  assert stats["lastScanDate"] is None
  assert stats["freshnessCounts"] == {"Excellent": 0, "Good": 0, "Fair": 0, "Poor": 0}
  assert stats["qualityRanges"] == {"excellent": 0, "good": 0, "fair": 0, "poor": 0}
  assert len(stats["monthlyScans"]) == 6
  assert set(stats["monthlyScans"].values()) == {0}


def test_stats_aggregates(scan_store, owners, alice_records):
  alice, bob = owners
  now = datetime.now(timezone.utc)
  stats = scan_store.stats(alice.id, now=now)

  assert stats["totalScans"] == len(SCORES)
  # 821 / 12 rounds down to 68
  assert stats["averageScore"] == 68
  assert stats["lastScanDate"] == _newest_first(alice_records)[0].analysis_date
  assert stats["freshnessCounts"] == {"Excellent": 2, "Good": 5, "Fair": 2, "Poor": 3}
  assert stats["qualityRanges"] == {"excellent": 2, "good": 5, "fair": 3, "poor": 2}
  assert stats["monthlyScans"][f"{now.year:04d}-{now.month:02d}"] == len(SCORES)
  assert list(stats["monthlyScans"]) == sorted(stats["monthlyScans"])
  assert scan_store.stats(bob.id)["totalScans"] == 0


def test_average_rounds_half_up(scan_store, owners):
  alice, _ = owners
  for index, score in enumerate((70, 71)):
    scan_store.create(alice.id, file_name="x.jpg", file_type="image/jpeg", file_size=1,
                      outcome=make_outcome(score), blob_name=f"half-{index}")

  assert scan_store.stats(alice.id)["averageScore"] == 71


def test_trailing_months_cross_year_boundary(scan_store, owners):
  alice, _ = owners
  stats = scan_store.stats(alice.id, now=datetime(2026, 2, 10, tzinfo=timezone.utc))

  assert list(stats["monthlyScans"]) == ["2025-09", "2025-10", "2025-11", "2025-12", "2026-01", "2026-02"]


def test_filter_from_query():
  filters = ScanFilter.from_query({"freshness": "good", "minScore": "70", "maxScore": " 89 "})

  assert filters == ScanFilter(freshness="Good", min_score=70, max_score=89)
  assert filters.to_sql() == ("freshness = ? AND quality_score >= ? AND quality_score <= ?", ["Good", 70, 89])
  assert ScanFilter.from_query({"freshness": "", "minScore": ""}) == ScanFilter()
  assert ScanFilter().to_sql() == ("", [])


@pytest.mark.parametrize(
  "query",
  [
    {"freshness": "Rotten"},
    {"minScore": "abc"},
    {"minScore": "-1"},
    {"maxScore": "101"},
    {"minScore": "80", "maxScore": "70"},
  ],
)
def test_filter_rejects_bad_query(query):
  with pytest.raises(InvalidInput):
    ScanFilter.from_query(query)


def test_parse_page():
  assert parse_page(None, None) == (1, 10)
  assert parse_page("3", "25") == (3, 25)
  for raw_page, raw_limit in (("0", "10"), ("1", "0"), ("1", "101"), ("x", "10")):
    with pytest.raises(InvalidInput):
      parse_page(raw_page, raw_limit)
  assert page_count(0, 10) == 0
  assert page_count(11, 10) == 2


def test_page_beyond_sqlite_integer_range_is_empty(scan_store, owners, alice_records):
  alice, _ = owners
  records, total = scan_store.list(alice.id, ScanFilter(), 10 ** 20, 100)

  assert records == []
  assert total == len(alice_records)

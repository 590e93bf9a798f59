"""
Tests for the Firestore query primitives
"""
from datetime import datetime, timezone

import pytest
from google.api_core.exceptions import InvalidArgument
from google.cloud.firestore import FieldFilter
from google.cloud.firestore_v1.field_path import FieldPath

from config import settings
from services.firestore_service import (
    CUSTOMERS,
    FirestoreService,
    _get_query_count,
    chunked,
    date_bounds,
)
from services.mocks import MockFirestoreClient


class NoCountQuery:
    """Query whose aggregation is unsupported"""

    def __init__(self, docs):
        self.docs = docs

    def count(self):
        raise RuntimeError("aggregation not supported")

    def stream(self):
        return iter(self.docs)


def test_date_bounds_cover_whole_days():
    start, end = date_bounds("2025-05-01", "2025-05-31")
    assert start == datetime(2025, 5, 1, 0, 0, 0, tzinfo=timezone.utc)
    assert end == datetime(2025, 5, 31, 23, 59, 59, tzinfo=timezone.utc)


def test_date_bounds_defaults():
    start, end = date_bounds()
    assert start.date().isoformat() == settings.DEFAULT_RANGE_START
    assert end <= datetime.now(timezone.utc)


def test_date_bounds_rejects_inverted_and_malformed_ranges():
    with pytest.raises(ValueError):
        date_bounds("2025-06-01", "2025-05-01")
    with pytest.raises(ValueError):
        date_bounds("01/06/2025", None)


def test_chunked_respects_in_query_limit():
    chunks = list(chunked(list(range(23))))
    assert [len(c) for c in chunks] == [10, 10, 3]


def test_count_aggregation(firestore_service):
    query = firestore_service.collection(CUSTOMERS)
    assert firestore_service.get_query_count(query) == 6


def test_count_falls_back_to_streaming():
    query = NoCountQuery(["a", "b", "c"])
    assert _get_query_count(query) == -1
    assert FirestoreService(MockFirestoreClient()).count_or_stream(query) == 3


def test_fetch_documents_by_ids_in_chunks():
    client = MockFirestoreClient({"customer": {f"c{i}": {"n": i} for i in range(25)}})
    collection = client.collection("customer")
    ids = [f"c{i}" for i in range(23)] + ["c1", "missing"]
    docs = FirestoreService.fetch_documents_by_ids(collection, ids)
    assert sorted(d["id"] for d in docs) == sorted(f"c{i}" for i in range(23))


def test_document_id_filters_require_references():
    client = MockFirestoreClient({"customer": {"abc": {}, "def": {}}})
    collection = client.collection("customer")

    with pytest.raises(InvalidArgument):
        list(collection.where(filter=FieldFilter(FieldPath.document_id(), "in", ["abc"])).stream())

    refs = [collection.document("abc"), client.collection("bookings").document("def")]
    docs = list(collection.where(filter=FieldFilter(FieldPath.document_id(), "in", refs)).stream())
    assert [d.id for d in docs] == ["abc"]


def test_fetch_documents_by_ids_sends_references():
    class RecordingCollection:
        def __init__(self):
            self.values = []

        def document(self, doc_id):
            return ("ref", doc_id)

        def where(self, filter=None):
            self.values.append(filter.value)
            return self

        def stream(self):
            return iter(())

    collection = RecordingCollection()
    FirestoreService.fetch_documents_by_ids(collection, ["a", "b"])
    assert collection.values == [[("ref", "a"), ("ref", "b")]]


def test_query_in_chunks_matches_references(firestore_service):
    refs = [firestore_service.customer_ref(pid) for pid in settings.TRACKED_PARTNER_IDS]
    bookings = firestore_service.query_in_chunks(firestore_service.collection("bookings"), "provider_id", refs)
    assert sorted(b["id"] for b in bookings) == ["b1", "b2", "b3", "b4", "b6", "b7"]


def test_stream_ordered_uses_index_when_available(firestore_service):
    query = firestore_service.collection("bookings").where("status", "==", "Service_Completed")
    docs = firestore_service.stream_ordered(query, "date")
    assert [d["id"] for d in docs] == ["b2", "b1", "b7"]


def test_stream_ordered_falls_back_to_in_memory_sort(mock_client):
    mock_client.unindexed_order_fields.add("date")
    service = FirestoreService(mock_client)
    query = service.collection("bookings").where("status", "==", "Service_Completed")

    assert [d["id"] for d in service.stream_ordered(query, "date")] == ["b2", "b1", "b7"]
    assert [d["id"] for d in service.stream_ordered(query, "date", descending=False)] == ["b7", "b1", "b2"]


def test_query_date_range(firestore_service):
    start = datetime(2025, 4, 1, tzinfo=timezone.utc)
    end = datetime.now(timezone.utc)
    docs = firestore_service.query_date_range("bookings", "date", start, end)
    assert [d["id"] for d in docs] == ["b2", "b5", "b1", "b3", "b4", "b6", "b7"]


def test_get_document_and_update(firestore_service):
    assert firestore_service.get_document(CUSTOMERS, "nobody") is None
    assert firestore_service.update_document(CUSTOMERS, "cust-1", {"bio": "Regular"})
    assert firestore_service.get_document(CUSTOMERS, "cust-1")["bio"] == "Regular"
    assert not firestore_service.update_document(CUSTOMERS, "nobody", {"bio": "x"})


def test_watch_forwards_added_documents(firestore_service, mock_client):
    seen = []
    query = firestore_service.collection("coupon").where("status", "==", "Unused")
    watch = firestore_service.watch(query, lambda doc: seen.append(doc["id"]))
    assert sorted(seen) == ["cp-1", "cp-2"]

    mock_client.collection("coupon").document("cp-4").set({"status": "Unused"})
    mock_client.collection("coupon").document("cp-5").set({"status": "Used"})
    watch.unsubscribe()
    mock_client.collection("coupon").document("cp-6").set({"status": "Unused"})

    assert sorted(seen) == ["cp-1", "cp-2", "cp-4"]

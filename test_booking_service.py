"""
Tests for booking tables, details, stats and the live feed
"""
from datetime import datetime, timedelta, timezone

import pytest

from conftest import P1
from services.booking_service import BookingService, amount, cart_refs_of


@pytest.fixture
def booking_service(firestore_service):
    return BookingService(firestore_service)


def test_amount_ignores_non_numbers():
    assert amount(12.5) == 12.5
    assert amount("100") == 0
    assert amount(None) == 0
    assert amount(True) == 0


def test_cart_refs_accepts_single_reference_or_list(mock_client):
    ref = mock_client.collection("subCategoryCart").document("sub-1")
    assert cart_refs_of({"subCategoryCart_id": ref}) == [ref]
    assert cart_refs_of({"subCategoryCart_id": [ref, None]}) == [ref]
    assert cart_refs_of({}) == []


def test_list_bookings_newest_first_with_hydrated_parties(booking_service):
    page = booking_service.list_bookings()
    assert [row["id"] for row in page.items] == ["b2", "b5", "b1", "b3", "b4", "b6", "b7"]

    b1 = page.items[2]
    assert b1["customer"] == {"name": "Anil Kumar", "phone": "+919000000001"}
    assert b1["provider"]["name"] == "Asha Provider"
    assert b1["services"] == ["Deep Cleaning"]
    assert b1["address"] == "MG Road"

    b5 = page.items[1]
    assert b5["provider"]["name"] == "Unknown"
    assert b5["services"] == ["Unknown Service"]


def test_list_bookings_search_and_status(booking_service):
    assert [r["id"] for r in booking_service.list_bookings(search="pest").items] == ["b2"]
    assert [r["id"] for r in booking_service.list_bookings(search="  BELA ").items] == ["b3", "b4", "b6"]
    completed = booking_service.list_bookings(status="Service_Completed")
    assert [r["id"] for r in completed.items] == ["b2", "b1", "b7"]


def test_list_bookings_pagination(booking_service):
    page = booking_service.list_bookings(page=2, page_size=3)
    assert [r["id"] for r in page.items] == ["b3", "b4", "b6"]
    assert page.total == 7
    assert page.total_pages == 3


def test_list_bookings_rejects_inverted_range(booking_service):
    with pytest.raises(ValueError):
        booking_service.list_bookings(from_date="2026-02-01", to_date="2026-01-01")


def test_customer_and_partner_bookings(booking_service):
    assert [r["id"] for r in booking_service.list_customer_bookings("cust-2").items] == ["b3", "b4", "b6"]
    partner = booking_service.list_partner_bookings(P1, status="service_completed")
    assert [r["id"] for r in partner.items] == ["b1", "b7"]


def test_booking_details(booking_service):
    details = booking_service.get_booking_details("b1")
    assert details["service_record"]["id"] == "d1"
    assert details["raw"]["amount_paid"] == 1000
    assert booking_service.get_booking_details("nope") is None


def test_booking_stats(booking_service):
    stats = booking_service.get_booking_stats()
    assert stats["total_bookings"] == 6
    assert stats["pending_bookings"] == 1
    assert stats["confirmed_bookings"] == 1
    assert stats["completed_bookings"] == 3
    assert stats["cancelled_bookings"] == 1
    assert stats["cancelled_by_customer"] == 1
    assert stats["total_revenue"] == 2300
    assert stats["total_offer_amount"] == 150
    assert stats["net_revenue"] == 2150
    assert stats["per_order_value"] == 766.67
    assert stats["completion_rate"] == 50.0
    assert stats["total_customers"] == 3
    assert stats["average_rating"] == 4.0


def test_merge_new_bookings_keeps_range_and_uniqueness():
    now = datetime(2026, 3, 15, tzinfo=timezone.utc)
    start, end = now - timedelta(days=30), now
    existing = [{"id": "a", "date": now - timedelta(days=2)}, {"id": "b", "date": now - timedelta(days=5)}]
    new_docs = [
        {"id": "a", "date": now - timedelta(days=1)},
        {"id": "c", "date": now - timedelta(days=3)},
        {"id": "d", "date": now - timedelta(days=90)},
        {"id": "e", "date": None},
        {"id": "f", "date": now - timedelta(hours=1)},
    ]
    merged = BookingService.merge_new_bookings(existing, new_docs, start, end)
    assert [b["id"] for b in merged] == ["f", "a", "c", "b"]
    assert BookingService.merge_new_bookings(existing, [], start, end) == existing


def test_merge_new_bookings_open_ended_range():
    now = datetime(2026, 3, 15, tzinfo=timezone.utc)
    later = {"id": "z", "date": now + timedelta(days=10)}
    merged = BookingService.merge_new_bookings([], [later], now - timedelta(days=1), None)
    assert merged == [later]


def test_watch_bookings_merges_through_merge_new_bookings(booking_service, mock_client, monkeypatch):
    calls = []
    merge = BookingService.merge_new_bookings

    def recording_merge(existing, new_docs, start, end):
        calls.append([d["id"] for d in new_docs])
        return merge(existing, new_docs, start, end)

    monkeypatch.setattr(BookingService, "merge_new_bookings", staticmethod(recording_merge))
    received = []
    watch = booking_service.watch_bookings(None, None, received.append, known_ids={"b1", "b2", "b3", "b4", "b5", "b6", "b7"})
    mock_client.collection("bookings").document("b8").set({"status": "Pending", "date": datetime.now(timezone.utc)})
    watch.unsubscribe()

    assert ["b8"] in calls
    assert [row["id"] for row in received] == ["b8"]


def test_watch_bookings_forwards_only_new_bookings_in_range(booking_service, mock_client):
    received = []
    known = {"b1", "b2", "b3", "b4", "b5", "b6", "b7"}
    watch = booking_service.watch_bookings(None, None, received.append, known_ids=known)
    assert received == []

    bookings = mock_client.collection("bookings")
    bookings.document("b8").set({
        "status": "Pending",
        "date": datetime.now(timezone.utc) - timedelta(minutes=1),
        "customer_id": mock_client.collection("customer").document("cust-1"),
    })
    bookings.document("b9").set({"status": "Pending", "date": datetime(2020, 1, 1, tzinfo=timezone.utc)})
    watch.unsubscribe()
    bookings.document("b10").set({"status": "Pending", "date": datetime.now(timezone.utc)})

    assert [row["id"] for row in received] == ["b8"]
    assert received[0]["customer"]["name"] == "Anil Kumar"

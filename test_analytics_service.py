"""
Tests for analytics widgets and month bucketing
"""
from datetime import datetime, timezone

import pytest

from conftest import EARNINGS_NOW, IST
from services.analytics_service import (
    AnalyticsService,
    bucket_by_month,
    change_between,
    month_buckets,
    slot_label,
    with_changes,
)
from services.coupon_service import UNUSED, CouponService, expiry_of, is_active


@pytest.fixture
def analytics_service(firestore_service):
    return AnalyticsService(firestore_service)


def test_month_buckets_are_contiguous():
    buckets = month_buckets(6, 0, EARNINGS_NOW)
    assert [b["label"] for b in buckets] == ["Oct 25", "Nov 25", "Dec 25", "Jan 26", "Feb 26", "Mar 26"]
    for earlier, later in zip(buckets, buckets[1:]):
        assert earlier["end"] == later["start"]
    assert buckets[-1]["end"] == datetime(2026, 4, 1, tzinfo=IST)


def test_bucket_by_month_ignores_records_outside_range():
    buckets = month_buckets(2, 0, EARNINGS_NOW)
    records = [
        {"when": datetime(2026, 2, 28, 23, 0, tzinfo=IST), "v": 5},
        {"when": datetime(2026, 3, 1, 0, 0, tzinfo=IST), "v": 7},
        {"when": datetime(2025, 12, 1, tzinfo=IST), "v": 100},
        {"when": None, "v": 100},
    ]
    result = bucket_by_month(records, lambda r: r["when"], {"total": lambda r: r["v"]}, buckets)
    assert result == [{"month": "Feb 26", "total": 5}, {"month": "Mar 26", "total": 7}]


def test_change_labels():
    assert change_between(0, 500)["change_label"] == "—"
    assert change_between(100, 105)["change_label"] == "▲ 5.0%"
    assert change_between(800, 500)["change_label"] == "▼ 38%"
    assert change_between(100, 100)["change_label"] == "0%"
    points = with_changes([{"revenue": 0}, {"revenue": 10}, {"revenue": 20}], "revenue")
    assert [p["change_dir"] for p in points] == ["flat", "flat", "up"]


def test_slot_label():
    assert slot_label(datetime(2026, 3, 10, 18, 15, tzinfo=IST)) == "06:00 PM"


def test_revenue_by_month(analytics_service):
    revenue = {p["month"]: p for p in analytics_service.get_revenue_by_month(now=EARNINGS_NOW)}
    march = revenue["Mar 26"]
    assert march["revenue"] == 1000
    assert march["wallet_used"] == 100
    assert march["discount"] == 50
    assert march["net_revenue"] == 850
    assert march["change_label"] == "▲ 100%"
    assert revenue["Feb 26"]["change_label"] == "▼ 38%"
    assert revenue["Jan 26"]["revenue"] == 800


def test_top_services(analytics_service):
    assert analytics_service.get_top_services() == [
        {"name": "Deep Cleaning", "bookings": 2},
        {"name": "Pest Control", "bookings": 1},
    ]
    assert analytics_service.get_top_services(limit=1) == [{"name": "Deep Cleaning", "bookings": 2}]


def test_most_booked_slots(analytics_service):
    assert analytics_service.get_most_booked_slots() == [
        {"time": "06:00 PM", "bookings": 2},
        {"time": "10:00 AM", "bookings": 1},
    ]


def test_daily_overview(analytics_service):
    overview = analytics_service.get_daily_overview()
    assert overview["total_present"] == 1
    assert overview["partners"][0]["name"] == "Asha Provider"


def test_coupons_summary(firestore_service):
    result = CouponService(firestore_service).list_coupons()
    assert result["summary"] == {
        "total_coupons": 3,
        "total_usage": 6,
        "total_savings": 75,
        "active_coupons": 1,
    }
    assert len(result["coupons"]) == 3


def test_coupon_search_keeps_summary(firestore_service):
    result = CouponService(firestore_service).list_coupons(search="summer")
    assert [c["code"] for c in result["coupons"]] == ["SUMMER20"]
    assert result["summary"]["total_coupons"] == 3


def test_coupon_expiry_accepts_text_dates():
    assert expiry_of({"expire_date": "2020-01-01"}).year == 2020
    assert expiry_of({"expire_date": "soon"}) is None
    assert expiry_of({}) is None


def test_coupon_without_expiry_is_inactive():
    now = datetime(2026, 3, 15, tzinfo=timezone.utc)
    assert is_active({"status": UNUSED, "expire_date": "2026-12-31"}, now)
    assert not is_active({"status": UNUSED}, now)
    assert not is_active({"status": UNUSED, "expire_date": "2026-01-01"}, now)

"""
Analytics service for dashboard charts and widgets
"""
import logging
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from google.cloud.firestore import FieldFilter

import sys
from pathlib import Path
sys.path.append(str(Path(__file__).parent.parent))

from config import settings
from services.booking_service import STATUS_COMPLETED, amount, cart_refs_of
from services.customer_service import today_bounds
from services.firestore_service import ATTENDANCE, BOOKINGS, FirestoreService, as_datetime, snapshot_to_dict
from services.hydration import ReferenceHydrator, ref_id, ref_path, unique_refs

logger = logging.getLogger(__name__)

REVENUE_MONTHS = 6
PARTNER_NAME_KEYS = ("display_name", "customer_name", "name")


def dashboard_tz() -> ZoneInfo:
    return ZoneInfo(settings.DASHBOARD_TIMEZONE)


def month_buckets(count: int = REVENUE_MONTHS, offset: int = 0, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Consecutive calendar months ending with the current month shifted back by ``offset``.

    Each bucket is ``{"label", "start", "end"}`` with ``start`` inclusive and
    ``end`` exclusive, oldest first.
    """
    now = now or datetime.now(dashboard_tz())
    tz = now.tzinfo
    buckets = []
    for i in range(count):
        months_back = count - 1 + offset - i
        year, month = divmod(now.year * 12 + (now.month - 1) - months_back, 12)
        start = datetime(year, month + 1, 1, tzinfo=tz)
        next_year, next_month = divmod(year * 12 + month + 1, 12)
        end = datetime(next_year, next_month + 1, 1, tzinfo=tz)
        buckets.append({"label": start.strftime("%b %y"), "start": start, "end": end})
    return buckets


def bucket_by_month(
    records: List[Dict[str, Any]],
    date_of: Callable[[Dict[str, Any]], Optional[datetime]],
    values: Dict[str, Callable[[Dict[str, Any]], float]],
    buckets: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """Sum the given value functions per month bucket. Records outside every bucket are ignored."""
    totals = [dict({"month": b["label"]}, **{name: 0 for name in values}) for b in buckets]
    for record in records:
        when = date_of(record)
        if when is None:
            continue
        for idx, bucket in enumerate(buckets):
            if bucket["start"] <= when < bucket["end"]:
                for name, fn in values.items():
                    totals[idx][name] += fn(record)
                break
    return totals


def change_between(previous: float, current: float) -> Dict[str, Any]:
    """Month-over-month change as percentage, direction and display label"""
    if previous <= 0:
        return {"change_pct": None, "change_dir": "flat", "change_label": "—"}
    pct = (current - previous) / previous * 100
    magnitude = abs(pct)
    rounded = round(magnitude, 1) if magnitude < 10 else round(magnitude)
    if pct > 0:
        return {"change_pct": pct, "change_dir": "up", "change_label": f"▲ {rounded}%"}
    if pct < 0:
        return {"change_pct": pct, "change_dir": "down", "change_label": f"▼ {rounded}%"}
    return {"change_pct": 0.0, "change_dir": "flat", "change_label": "0%"}


def with_changes(points: List[Dict[str, Any]], field: str) -> List[Dict[str, Any]]:
    result = []
    for i, point in enumerate(points):
        if i == 0:
            change = {"change_pct": None, "change_dir": "flat", "change_label": "—"}
        else:
            change = change_between(points[i - 1][field], point[field])
        result.append(dict(point, **change))
    return result


def slot_label(when: datetime) -> str:
    """Hour bucket label such as '06:00 PM'"""
    return when.strftime("%I:00 %p")


class AnalyticsService:
    """Service for analytics and statistics aggregation"""

    def __init__(self, firestore_service: FirestoreService, hydrator: Optional[ReferenceHydrator] = None):
        """Initialize analytics service with Firestore service"""
        self.firestore_service = firestore_service
        self.hydrator = hydrator or ReferenceHydrator(firestore_service, name_keys=PARTNER_NAME_KEYS)
        self.bookings_collection = firestore_service.collection(BOOKINGS)

    def _completed_bookings(self, tracked_only: bool = False) -> List[Dict[str, Any]]:
        query = self.bookings_collection.where(filter=FieldFilter("status", "==", STATUS_COMPLETED))
        if tracked_only:
            query = query.where(filter=FieldFilter("provider_id", "in", self.firestore_service.tracked_partner_refs()))
        return [snapshot_to_dict(doc) for doc in query.stream()]

    def get_revenue_by_month(self, month_offset: int = 0, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Six months of completed-booking revenue for the tracked partners"""
        buckets = month_buckets(REVENUE_MONTHS, month_offset, now)
        try:
            bookings = self._completed_bookings(tracked_only=True)
        except Exception as e:
            logger.error(f"Failed to load revenue data: {e}")
            bookings = []

        points = bucket_by_month(
            bookings,
            lambda b: as_datetime(b.get("timeSlot")),
            {
                "revenue": lambda b: amount(b.get("amount_paid")),
                "wallet_used": lambda b: amount(b.get("walletAmountUsed")),
                "discount": lambda b: amount(b.get("discount_amount")),
                "net_revenue": lambda b: (
                    amount(b.get("amount_paid")) - amount(b.get("walletAmountUsed")) - amount(b.get("discount_amount"))
                ),
            },
            buckets,
        )
        return with_changes(points, "revenue")

    def get_top_services(self, limit: int = 5) -> List[Dict[str, Any]]:
        """Most booked services among completed bookings of the tracked partners"""
        tracked = set(settings.TRACKED_PARTNER_IDS)
        try:
            bookings = [b for b in self._completed_bookings() if ref_id(b.get("provider_id")) in tracked]
            refs = unique_refs(ref for b in bookings for ref in cart_refs_of(b))
            service_names: Dict[str, str] = {}
            for snap in self.firestore_service.get_all(refs):
                if snap.exists:
                    name = (snap.to_dict() or {}).get("service_name")
                    if name:
                        service_names[ref_path(snap.reference)] = name
        except Exception as e:
            logger.error(f"Error fetching top services: {e}")
            return []

        counts = Counter(
            service_names[ref_path(ref)]
            for b in bookings
            for ref in cart_refs_of(b)
            if ref_path(ref) in service_names
        )
        return [{"name": name, "bookings": count} for name, count in counts.most_common(limit)]

    def get_most_booked_slots(self) -> List[Dict[str, Any]]:
        """Completed bookings per hour-of-day slot, busiest first"""
        tz = dashboard_tz()
        try:
            bookings = self._completed_bookings()
        except Exception as e:
            logger.error(f"Error fetching booked slots: {e}")
            return []

        counts: Counter = Counter()
        for b in bookings:
            when = as_datetime(b.get("timeSlot"))
            if when is not None:
                counts[slot_label(when.astimezone(tz))] += 1
        return [{"time": time, "bookings": n} for time, n in counts.most_common()]

    def get_daily_overview(self) -> Dict[str, Any]:
        """Partners marked present today"""
        day_start, day_end = today_bounds()
        present: List[Dict[str, Any]] = []
        try:
            attendance = [
                snapshot_to_dict(doc)
                for doc in self.firestore_service.collection(ATTENDANCE).where(
                    filter=FieldFilter("status", "==", "Present")
                ).stream()
            ]
            for record in attendance:
                when = as_datetime(record.get("startTime") or record.get("date"))
                if when is not None and day_start <= when <= day_end:
                    present.append(record)
        except Exception as e:
            logger.error(f"Error fetching today's attendance: {e}")

        names = self.hydrator.hydrate([r.get("partnerid") for r in present], fallback="Unknown Partner")
        partners = [
            {"name": self.hydrator.label_for(names, r.get("partnerid"), "Unknown Partner").name, "count": 1, "amount": 0}
            for r in present
        ]
        return {
            "date": day_start.strftime("%A, %d %b %Y"),
            "total_present": len(present),
            "partners": partners,
        }

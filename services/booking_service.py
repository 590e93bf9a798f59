"""
Booking service: booking tables, booking details, KPI stats and the live bookings feed
"""
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from google.cloud.firestore import FieldFilter, Query

import sys
from pathlib import Path
sys.path.append(str(Path(__file__).parent.parent))

from config import settings
from services.firestore_service import (
    BOOKING_DETAILS,
    BOOKINGS,
    CART,
    CUSTOMERS,
    REVIEWS,
    FirestoreService,
    as_datetime,
    date_bounds,
    snapshot_to_dict,
    sort_key_for,
)
from services.hydration import ReferenceHydrator, ref_id, ref_path, unique_refs
from services.listing import Page, build_search_text, filter_by_search, filter_by_status, paginate

logger = logging.getLogger(__name__)

STATUS_PENDING = "Pending"
STATUS_ACCEPTED = "Accepted"
STATUS_COMPLETED = "Service_Completed"
STATUS_CANCELLED_BY_PARTNER = "Booking_Cancelled by true"
STATUS_CANCELLED_BY_CUSTOMER = "Cancelled"

UNKNOWN_SERVICE = "Unknown Service"
LIVE_FEED_WINDOW = 5


def amount(value: Any) -> float:
    """Numeric field value, 0 for anything that is not a number"""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value
    return 0


def cart_refs_of(booking: Dict[str, Any]) -> List[Any]:
    """subCategoryCart_id holds either one reference or a list of them"""
    value = booking.get("subCategoryCart_id")
    if isinstance(value, (list, tuple)):
        return [v for v in value if v]
    return [value] if value else []


def optional_date_filters(field: str, from_date: Optional[str], to_date: Optional[str]) -> List[FieldFilter]:
    if not from_date and not to_date:
        return []
    start, end = date_bounds(from_date, to_date)
    return [FieldFilter(field, ">=", start), FieldFilter(field, "<=", end)]


class BookingService:
    """Service for the booking views of the dashboard"""

    def __init__(self, firestore_service: FirestoreService, hydrator: Optional[ReferenceHydrator] = None):
        self.firestore_service = firestore_service
        self.hydrator = hydrator or ReferenceHydrator(firestore_service)
        self.bookings_collection = firestore_service.collection(BOOKINGS)
        self.cart_collection = firestore_service.collection(CART)

    # Hydration

    def resolve_services(self, bookings: List[Dict[str, Any]]) -> Dict[str, List[str]]:
        """Map booking id -> service names found in the cart collection.

        Cart documents point back at the booking's sub-category cart through
        ``subCategoryCartId``. Lookups are batched across all bookings.
        """
        names_by_cart: Dict[str, List[str]] = defaultdict(list)
        refs = unique_refs(ref for booking in bookings for ref in cart_refs_of(booking))
        if refs:
            try:
                cart_docs = self.firestore_service.query_in_chunks(self.cart_collection, "subCategoryCartId", refs)
                for cart in cart_docs:
                    name = cart.get("service_name") or cart.get("serviceName") or UNKNOWN_SERVICE
                    names_by_cart[ref_path(cart.get("subCategoryCartId"))].append(name)
            except Exception as e:
                logger.warning(f"Error querying cart collection: {e}")

        services: Dict[str, List[str]] = {}
        for booking in bookings:
            names = [name for ref in cart_refs_of(booking) for name in names_by_cart.get(ref_path(ref), [])]
            services[booking["id"]] = names or [UNKNOWN_SERVICE]
        return services

    def to_rows(self, bookings: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Hydrate raw booking documents into table rows"""
        parties = self.hydrator.hydrate(
            [b.get("customer_id") for b in bookings] + [b.get("provider_id") for b in bookings]
        )
        services = self.resolve_services(bookings)

        rows = []
        for booking in bookings:
            customer = self.hydrator.label_for(parties, booking.get("customer_id"))
            provider = self.hydrator.label_for(parties, booking.get("provider_id"))
            rows.append({
                "id": booking["id"],
                "status": booking.get("status"),
                "date": booking.get("date"),
                "time_slot": booking.get("timeSlot"),
                "amount_paid": amount(booking.get("amount_paid")),
                "address": booking.get("bookingAddress"),
                "city": booking.get("city"),
                "customer_id": ref_id(booking.get("customer_id")),
                "provider_id": ref_id(booking.get("provider_id")),
                "customer": customer.to_dict(),
                "provider": provider.to_dict(),
                "services": services.get(booking["id"], [UNKNOWN_SERVICE]),
            })
        return rows

    @staticmethod
    def search_text(row: Dict[str, Any]) -> str:
        return build_search_text([
            row["id"],
            row["customer"]["name"],
            row["provider"]["name"],
            row["customer"]["phone"],
            row["provider"]["phone"],
            " ".join(row["services"]),
            row["status"],
            row["address"],
            row["city"],
        ])

    def filter_rows(self, rows: List[Dict[str, Any]], search: Optional[str], status: Optional[str]) -> List[Dict[str, Any]]:
        rows = filter_by_search(rows, search, self.search_text)
        return filter_by_status(rows, status, lambda row: row["status"])

    # Tables

    def fetch_bookings(self, from_date: Optional[str] = None, to_date: Optional[str] = None) -> List[Dict[str, Any]]:
        """Bookings dated within the range, newest first"""
        start, end = date_bounds(from_date, to_date)
        try:
            return self.firestore_service.query_date_range(BOOKINGS, "date", start, end)
        except Exception as e:
            logger.error(f"Failed to load bookings: {e}")
            return []

    def list_bookings(
        self,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        search: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        page_size: Optional[int] = None
    ) -> Page:
        """Fetch, hydrate, filter and paginate the booking management table"""
        rows = self.to_rows(self.fetch_bookings(from_date, to_date))
        filtered = self.filter_rows(rows, search, status)
        return paginate(filtered, page, page_size or settings.DEFAULT_PAGE_SIZE)

    def list_customer_bookings(self, customer_id: str, page: int = 1, page_size: Optional[int] = None) -> Page:
        try:
            query = self.bookings_collection.where(
                filter=FieldFilter("customer_id", "==", self.firestore_service.customer_ref(customer_id))
            )
            bookings = self.firestore_service.stream_ordered(query, "date")
        except Exception as e:
            logger.error(f"Failed to load bookings for customer {customer_id}: {e}")
            bookings = []
        return paginate(self.to_rows(bookings), page, page_size or settings.DEFAULT_PAGE_SIZE)

    def list_partner_bookings(
        self,
        partner_id: str,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        search: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        page_size: Optional[int] = None
    ) -> Page:
        date_filters = optional_date_filters("date", from_date, to_date)
        try:
            query = self.bookings_collection.where(
                filter=FieldFilter("provider_id", "==", self.firestore_service.customer_ref(partner_id))
            )
            for extra in date_filters:
                query = query.where(filter=extra)
            bookings = self.firestore_service.stream_ordered(query, "date")
        except Exception as e:
            logger.error(f"Failed to load bookings for partner {partner_id}: {e}")
            bookings = []
        rows = self.filter_rows(self.to_rows(bookings), search, status)
        return paginate(rows, page, page_size or settings.DEFAULT_PAGE_SIZE)

    def get_booking_details(self, booking_id: str) -> Optional[Dict[str, Any]]:
        """Booking row plus its start-to-end service record"""
        booking = self.firestore_service.get_document(BOOKINGS, booking_id)
        if not booking:
            return None

        row = self.to_rows([booking])[0]
        row["raw"] = booking
        try:
            details_query = self.firestore_service.collection(BOOKING_DETAILS).where(
                filter=FieldFilter("bookingId", "==", self.firestore_service.reference(BOOKINGS, booking_id))
            ).limit(1)
            details = [snapshot_to_dict(doc) for doc in details_query.stream()]
            row["service_record"] = details[0] if details else None
        except Exception as e:
            logger.error(f"Failed to load service record for booking {booking_id}: {e}")
            row["service_record"] = None
        return row

    # Live updates

    @staticmethod
    def merge_new_bookings(
        existing: List[Dict[str, Any]],
        new_docs: List[Dict[str, Any]],
        start: datetime,
        end: Optional[datetime]
    ) -> List[Dict[str, Any]]:
        """Merge live-feed bookings into an already loaded list.

        Only bookings dated inside [start, end] and not already present are
        added; ``end=None`` leaves the range open. The result is ordered by
        booking date, newest first.
        """
        known = {b["id"] for b in existing}
        added = []
        for doc in new_docs:
            when = as_datetime(doc.get("date"))
            if doc["id"] in known or when is None or when < start or (end is not None and when > end):
                continue
            known.add(doc["id"])
            added.append(doc)
        if not added:
            return list(existing)
        combined = added + list(existing)
        combined.sort(key=sort_key_for("date"), reverse=True)
        return combined

    def watch_bookings(
        self,
        from_date: Optional[str],
        to_date: Optional[str],
        on_booking: Callable[[Dict[str, Any]], None],
        known_ids: Optional[set] = None
    ):
        """Listen to the newest bookings and forward hydrated rows inside the range"""
        start, end = date_bounds(from_date, to_date)
        # An open-ended range keeps accepting bookings created after subscribing
        end = end if to_date else None
        loaded: List[Dict[str, Any]] = [{"id": booking_id} for booking_id in known_ids or ()]

        def _on_added(doc: Dict[str, Any]) -> None:
            nonlocal loaded
            merged = self.merge_new_bookings(loaded, [doc], start, end)
            if len(merged) == len(loaded):
                return
            loaded = merged
            on_booking(self.to_rows([doc])[0])

        query = self.bookings_collection.order_by("date", direction=Query.DESCENDING).limit(LIVE_FEED_WINDOW)
        return self.firestore_service.watch(query, _on_added)

    # Stats

    def get_booking_stats(self, from_date: Optional[str] = None, to_date: Optional[str] = None) -> Dict[str, Any]:
        """KPI cards for the bookings page"""
        date_filters = optional_date_filters("date", from_date, to_date)
        customer_filters = optional_date_filters("created_time", from_date, to_date)
        tracked = self.firestore_service.tracked_partner_refs()
        fs = self.firestore_service

        def bookings_query(*filters: FieldFilter):
            query = self.bookings_collection
            for f in list(filters) + date_filters:
                query = query.where(filter=f)
            return query

        tracked_filter = FieldFilter("provider_id", "in", tracked)
        try:
            total = fs.count_or_stream(bookings_query(tracked_filter))
            pending = fs.count_or_stream(bookings_query(FieldFilter("status", "==", STATUS_PENDING)))
            confirmed = fs.count_or_stream(bookings_query(tracked_filter, FieldFilter("status", "==", STATUS_ACCEPTED)))
            cancelled = fs.count_or_stream(
                bookings_query(tracked_filter, FieldFilter("status", "==", STATUS_CANCELLED_BY_PARTNER))
            )
            cancelled_by_customer = fs.count_or_stream(
                bookings_query(FieldFilter("status", "==", STATUS_CANCELLED_BY_CUSTOMER))
            )
            completed_docs = [
                snapshot_to_dict(doc)
                for doc in bookings_query(tracked_filter, FieldFilter("status", "==", STATUS_COMPLETED)).stream()
            ]
        except Exception as e:
            logger.error(f"Failed to compute booking stats: {e}")
            return self.empty_stats()

        completed = len(completed_docs)
        revenue = sum(amount(b.get("amount_paid")) for b in completed_docs)
        wallet_used = sum(amount(b.get("walletAmountUsed")) for b in completed_docs)
        discount = sum(amount(b.get("discount_amount")) for b in completed_docs)

        return {
            "total_bookings": total,
            "pending_bookings": pending,
            "confirmed_bookings": confirmed,
            "completed_bookings": completed,
            "cancelled_bookings": cancelled,
            "cancelled_by_customer": cancelled_by_customer,
            "total_revenue": revenue,
            "total_offer_amount": wallet_used + discount,
            "net_revenue": revenue - wallet_used - discount,
            "per_order_value": round(revenue / completed, 2) if completed else 0,
            "completion_rate": round(completed / total * 100, 1) if total > 0 else 0,
            "total_customers": self._count_customers(customer_filters),
            "average_rating": self._tracked_partner_rating(),
        }

    @staticmethod
    def empty_stats() -> Dict[str, Any]:
        return {
            "total_bookings": 0,
            "pending_bookings": 0,
            "confirmed_bookings": 0,
            "completed_bookings": 0,
            "cancelled_bookings": 0,
            "cancelled_by_customer": 0,
            "total_revenue": 0,
            "total_offer_amount": 0,
            "net_revenue": 0,
            "per_order_value": 0,
            "completion_rate": 0,
            "total_customers": 0,
            "average_rating": 0,
        }

    def _count_customers(self, created_filters: List[FieldFilter]) -> int:
        try:
            query = self.firestore_service.collection(CUSTOMERS).where(filter=FieldFilter("userType.customer", "==", True))
            for f in created_filters:
                query = query.where(filter=f)
            return self.firestore_service.count_or_stream(query)
        except Exception as e:
            logger.error(f"Failed to count customers: {e}")
            return 0

    def _tracked_partner_rating(self) -> float:
        try:
            reviews = self.firestore_service.query_in_chunks(
                self.firestore_service.collection(REVIEWS), "partnerId", self.firestore_service.tracked_partner_refs()
            )
        except Exception as e:
            logger.error(f"Failed to load partner reviews: {e}")
            return 0
        ratings = [amount(r.get("partnerRating")) for r in reviews if amount(r.get("partnerRating")) > 0]
        return round(sum(ratings) / len(ratings), 2) if ratings else 0

"""
Customer service: customer table, customer KPIs, subscriptions, referrals and credits
"""
import logging
from collections import Counter
from datetime import datetime, time
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from google.cloud.firestore import FieldFilter

import sys
from pathlib import Path
sys.path.append(str(Path(__file__).parent.parent))

from config import settings
from services.booking_service import STATUS_COMPLETED, amount
from services.firestore_service import (
    BOOKINGS,
    CHEMICAL_SPEND,
    CREDIT_PURCHASES,
    CUSTOMERS,
    PARTNER_CREDITS,
    REVIEWS,
    SUBSCRIPTIONS,
    FirestoreService,
    date_bounds,
    snapshot_to_dict,
    sort_key_for,
)
from services.hydration import display_name, display_phone, ref_id
from services.listing import Page, build_search_text, filter_by_search, paginate

logger = logging.getLogger(__name__)

MEMBERSHIP_FILTERS = ("all", "member", "non-member")
SUBSCRIPTION_FILTERS = ("all", "active", "expired")
ACTIVE = "active"


def format_location(location: Any) -> Optional[str]:
    """'lat, lng' with five decimals for GeoPoints or lat/lng dicts"""
    if not location:
        return None
    if isinstance(location, dict):
        lat = location.get("latitude", location.get("lat"))
        lng = location.get("longitude", location.get("lng"))
    else:
        lat = getattr(location, "latitude", None)
        lng = getattr(location, "longitude", None)
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return None
    return f"{lat:.5f}, {lng:.5f}"


def today_bounds(tz_name: Optional[str] = None) -> tuple:
    tz = ZoneInfo(tz_name or settings.DASHBOARD_TIMEZONE)
    today = datetime.now(tz).date()
    return datetime.combine(today, time.min, tzinfo=tz), datetime.combine(today, time.max, tzinfo=tz)


class CustomerService:
    """Service for the customer views of the dashboard"""

    def __init__(self, firestore_service: FirestoreService):
        self.firestore_service = firestore_service
        self.customers_collection = firestore_service.collection(CUSTOMERS)
        self.bookings_collection = firestore_service.collection(BOOKINGS)

    def _customers_query(self):
        return self.customers_collection.where(filter=FieldFilter("userType.customer", "==", True))

    @staticmethod
    def to_row(customer: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": customer["id"],
            "uid": customer.get("uid"),
            "name": customer.get("customer_name") or customer.get("display_name") or "",
            "customer_name": customer.get("customer_name"),
            "display_name": customer.get("display_name"),
            "email": customer.get("email"),
            "phone": display_phone(customer),
            "phone_number": customer.get("phone_number"),
            "contact_no": customer.get("contact_no"),
            "bio": customer.get("bio"),
            "photo_url": customer.get("photo_url"),
            "created_time": customer.get("created_time"),
            "location": format_location(customer.get("location")),
            "subscription": customer.get("Subscription"),
            "is_member": customer.get("Subscription") == "Active",
            "referral_by": customer.get("referralBy"),
        }

    @staticmethod
    def search_text(row: Dict[str, Any]) -> str:
        return build_search_text([
            row["customer_name"],
            row["display_name"],
            row["email"],
            row["phone_number"],
            row["contact_no"],
            row["uid"],
            row["bio"],
        ])

    @staticmethod
    def filter_membership(rows: List[Dict[str, Any]], membership: Optional[str]) -> List[Dict[str, Any]]:
        membership = (membership or "all").lower()
        if membership not in MEMBERSHIP_FILTERS:
            raise ValueError(f"Unknown membership filter: {membership}")
        if membership == "member":
            return [r for r in rows if r["is_member"]]
        if membership == "non-member":
            return [r for r in rows if not r["is_member"]]
        return list(rows)

    def fetch_customers(self, from_date: Optional[str] = None, to_date: Optional[str] = None) -> List[Dict[str, Any]]:
        start, end = date_bounds(from_date, to_date)
        try:
            return self.firestore_service.query_date_range(
                CUSTOMERS, "created_time", start, end,
                filters=[FieldFilter("userType.customer", "==", True)]
            )
        except Exception as e:
            logger.error(f"Failed to load customers: {e}")
            return []

    def list_customers(
        self,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        search: Optional[str] = None,
        membership: Optional[str] = "all",
        page: int = 1,
        page_size: Optional[int] = None
    ) -> Page:
        rows = [self.to_row(c) for c in self.fetch_customers(from_date, to_date)]
        rows = filter_by_search(rows, search, self.search_text)
        rows = self.filter_membership(rows, membership)
        return paginate(rows, page, page_size or settings.DEFAULT_PAGE_SIZE)

    def get_customer(self, customer_id: str) -> Optional[Dict[str, Any]]:
        customer = self.firestore_service.get_document(CUSTOMERS, customer_id)
        if not customer:
            return None
        row = self.to_row(customer)
        row["referral_code"] = customer.get("referralCode")
        row["address"] = customer.get("address")
        return row

    # KPIs

    def completed_booking_counts(self, customer_ids: List[str]) -> Counter:
        """Completed bookings per customer id, queried in IN-chunks of 10"""
        refs = [self.firestore_service.customer_ref(cid) for cid in customer_ids]
        bookings = self.firestore_service.query_in_chunks(
            self.bookings_collection, "customer_id", refs,
            FieldFilter("status", "==", STATUS_COMPLETED)
        )
        return Counter(ref_id(b.get("customer_id")) for b in bookings if ref_id(b.get("customer_id")))

    @staticmethod
    def split_one_vs_many(counts: Counter) -> tuple:
        one = sum(1 for c in counts.values() if c == 1)
        many = sum(1 for c in counts.values() if c > 1)
        return one, many

    def get_customer_stats(self, from_date: Optional[str] = None, to_date: Optional[str] = None) -> Dict[str, Any]:
        """Customer KPI cards: signups in range and how many booked once or repeatedly"""
        start, end = date_bounds(from_date, to_date)
        stats = {
            "total_customers": 0,
            "customers_with_one_booking": 0,
            "customers_with_multiple_bookings": 0,
            "new_customers_today": 0,
        }
        try:
            in_range = self._customers_query().where(
                filter=FieldFilter("created_time", ">=", start)
            ).where(filter=FieldFilter("created_time", "<=", end))
            customer_ids = [doc.id for doc in in_range.stream()]
            total = self.firestore_service.get_query_count(in_range)
            stats["total_customers"] = total if total >= 0 else len(customer_ids)

            if customer_ids:
                one, many = self.split_one_vs_many(self.completed_booking_counts(customer_ids))
                stats["customers_with_one_booking"] = one
                stats["customers_with_multiple_bookings"] = many

            day_start, day_end = today_bounds()
            today_query = self._customers_query().where(
                filter=FieldFilter("created_time", ">=", day_start)
            ).where(filter=FieldFilter("created_time", "<=", day_end))
            stats["new_customers_today"] = self.firestore_service.count_or_stream(today_query)
        except Exception as e:
            logger.error(f"Failed to compute customer stats: {e}")
        return stats

    def get_new_vs_repeat(self, from_date: Optional[str] = None, to_date: Optional[str] = None) -> Dict[str, Any]:
        """New vs repeat customers over completed bookings, plus tracked-partner rating"""
        result = {
            "total_customers": 0,
            "new_customer_count": 0,
            "repeat_customer_count": 0,
            "average_rating": 0,
            "total_ratings": 0,
        }
        range_filters: List[FieldFilter] = []
        if from_date and to_date:
            start, end = date_bounds(from_date, to_date)
            range_filters = [FieldFilter("createdAt", ">=", start), FieldFilter("createdAt", "<=", end)]

        try:
            result["total_customers"] = self.firestore_service.count_or_stream(self._customers_query())

            bookings_query = self.bookings_collection.where(filter=FieldFilter("status", "==", STATUS_COMPLETED))
            for f in range_filters:
                bookings_query = bookings_query.where(filter=f)
            customer_ids = [ref_id((doc.to_dict() or {}).get("customer_id")) for doc in bookings_query.stream()]
            counts = Counter(cid for cid in customer_ids if cid)
            new, repeat = self.split_one_vs_many(counts)
            result["new_customer_count"] = new
            result["repeat_customer_count"] = repeat

            reviews = self.firestore_service.query_in_chunks(
                self.firestore_service.collection(REVIEWS), "partnerId",
                self.firestore_service.tracked_partner_refs(), *range_filters
            )
            ratings = [amount(r.get("partnerRating")) for r in reviews if amount(r.get("partnerRating")) > 0]
            result["total_ratings"] = len(ratings)
            result["average_rating"] = round(sum(ratings) / len(ratings), 2) if ratings else 0
        except Exception as e:
            logger.error(f"Failed to compute new vs repeat customers: {e}")
        return result

    # Subscriptions

    @staticmethod
    def latest_per_customer(subscriptions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Keep each customer's most recent subscription by startDate"""
        latest: Dict[str, Dict[str, Any]] = {}
        start_key = sort_key_for("startDate")
        for sub in subscriptions:
            customer_id = ref_id(sub.get("customerRef"))
            if not customer_id:
                continue
            current = latest.get(customer_id)
            if current is None or start_key(sub) > start_key(current):
                latest[customer_id] = sub
        return sorted(latest.values(), key=start_key, reverse=True)

    @staticmethod
    def subscription_search_text(row: Dict[str, Any]) -> str:
        customer = row.get("customer") or {}
        return build_search_text([
            row["id"],
            customer.get("display_name") or customer.get("customer_name") or row.get("name") or "",
            customer.get("email") or "",
            customer.get("phone_number") or row.get("contact_no") or customer.get("contact_no") or "",
        ])

    def list_subscriptions(
        self,
        search: Optional[str] = None,
        status: Optional[str] = "all",
        page: int = 1,
        page_size: Optional[int] = None
    ) -> Page:
        status = (status or "all").lower()
        if status not in SUBSCRIPTION_FILTERS:
            raise ValueError(f"Unknown subscription filter: {status}")

        try:
            subscriptions = self.firestore_service.stream_ordered(
                self.firestore_service.collection(SUBSCRIPTIONS), "startDate"
            )
        except Exception as e:
            logger.error(f"Failed to load subscriptions: {e}")
            subscriptions = []

        latest = self.latest_per_customer(subscriptions)
        customer_ids = [ref_id(sub.get("customerRef")) for sub in latest]
        try:
            customers = {
                c["id"]: c for c in self.firestore_service.fetch_documents_by_ids(self.customers_collection, customer_ids)
            }
        except Exception as e:
            logger.error(f"Failed to fetch customer info for subscriptions: {e}")
            customers = {}

        rows = []
        for sub in latest:
            customer = customers.get(ref_id(sub.get("customerRef")))
            rows.append({
                "id": sub["id"],
                "status": sub.get("Status"),
                "start_date": sub.get("startDate"),
                "end_date": sub.get("endDate"),
                "savings": amount(sub.get("Savings")),
                "bookings_count": amount(sub.get("BookingsCount")),
                "remaining_days": sub.get("Remaining_days"),
                "name": sub.get("Name"),
                "contact_no": sub.get("contactNo"),
                "customer": {
                    "id": customer["id"],
                    "display_name": customer.get("display_name"),
                    "customer_name": customer.get("customer_name"),
                    "email": customer.get("email"),
                    "phone_number": customer.get("phone_number"),
                    "contact_no": customer.get("contact_no"),
                    "photo_url": customer.get("photo_url"),
                } if customer else None,
            })

        rows = filter_by_search(rows, search, self.subscription_search_text)
        if status == "active":
            rows = [r for r in rows if (r["status"] or "").lower() == ACTIVE]
        elif status == "expired":
            rows = [r for r in rows if (r["status"] or "").lower() != ACTIVE]
        return paginate(rows, page, page_size or settings.DEFAULT_PAGE_SIZE)

    # Customer detail sections

    def get_referrals(self, customer_id: str) -> List[Dict[str, Any]]:
        """Customers who signed up with this customer's referral code"""
        customer = self.firestore_service.get_document(CUSTOMERS, customer_id)
        code = (customer or {}).get("referralCode")
        if not code:
            return []
        try:
            referred = [
                snapshot_to_dict(doc)
                for doc in self.customers_collection.where(filter=FieldFilter("referralBy", "==", code)).stream()
            ]
            refs = [self.firestore_service.customer_ref(c["id"]) for c in referred]
            bookings = self.firestore_service.query_in_chunks(self.bookings_collection, "customer_id", refs)
        except Exception as e:
            logger.error(f"Failed to load referrals for {customer_id}: {e}")
            return []

        booking_counts = Counter(ref_id(b.get("customer_id")) for b in bookings)
        spent = Counter()
        for b in bookings:
            spent[ref_id(b.get("customer_id"))] += amount(b.get("amount_paid"))

        return [
            {
                "id": c["id"],
                "name": display_name(c, ("display_name", "customer_name"), "Unknown"),
                "email": c.get("email"),
                "phone": display_phone(c),
                "photo_url": c.get("photo_url"),
                "created_time": c.get("created_time"),
                "bookings": booking_counts.get(c["id"], 0),
                "total_spent": spent.get(c["id"], 0),
            }
            for c in sorted(referred, key=sort_key_for("created_time"), reverse=True)
        ]

    def get_credits(self, customer_id: str) -> Dict[str, Any]:
        """Credit balance, credit purchases and chemical spend of a partner account"""
        ref = self.firestore_service.customer_ref(customer_id)
        fs = self.firestore_service
        result = {
            "credit_balance": 0,
            "expiry_date": None,
            "purchases": [],
            "chemical_spend": [],
            "total_purchase_amount": 0,
            "total_credits_purchased": 0,
            "total_chemical_spend": 0,
        }
        try:
            overall = [
                snapshot_to_dict(doc)
                for doc in fs.collection(PARTNER_CREDITS).where(filter=FieldFilter("service_partner_id", "==", ref)).limit(1).stream()
            ]
            if overall:
                result["credit_balance"] = amount(overall[0].get("credit_balance"))
                result["expiry_date"] = overall[0].get("expiryDate")
                result["user_type"] = overall[0].get("user_type")

            purchases = fs.stream_ordered(
                fs.collection(CREDIT_PURCHASES).where(filter=FieldFilter("partnerId", "==", ref)), "purchase_date"
            )
            spend = fs.stream_ordered(
                fs.collection(CHEMICAL_SPEND).where(filter=FieldFilter("partnerId", "==", ref)), "spend_date"
            )
        except Exception as e:
            logger.error(f"Failed to load credits for {customer_id}: {e}")
            return result

        result["purchases"] = [
            {
                "id": p["id"],
                "amount": amount(p.get("amount_paid")),
                "credits": amount(p.get("credits_purchased")),
                "description": f"Purchased {amount(p.get('credits_purchased'))} credits",
                "purchase_date": p.get("purchase_date"),
                "expiry_date": p.get("expiryDate"),
                "status": p.get("status"),
            }
            for p in purchases
        ]
        result["chemical_spend"] = [
            {
                "id": s["id"],
                "booking_id": ref_id(s.get("bookingId")),
                "amount": amount(s.get("chemical_spend")),
                "spend_date": s.get("spend_date"),
            }
            for s in spend
        ]
        result["total_purchase_amount"] = sum(p["amount"] for p in result["purchases"])
        result["total_credits_purchased"] = sum(p["credits"] for p in result["purchases"])
        result["total_chemical_spend"] = sum(s["amount"] for s in result["chemical_spend"])
        return result

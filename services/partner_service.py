"""
Partner service: partner directory, top partners, earnings, credits, loans, reviews,
attendance, fuel bills and onboarding documents
"""
import logging
from collections import Counter, defaultdict
from datetime import date, datetime, timedelta, tzinfo
from typing import Any, Dict, List, Optional

from google.cloud.firestore import FieldFilter

import sys
from pathlib import Path
sys.path.append(str(Path(__file__).parent.parent))

from config import settings
from services.analytics_service import PARTNER_NAME_KEYS, bucket_by_month, dashboard_tz, month_buckets
from services.booking_service import STATUS_COMPLETED, amount, optional_date_filters
from services.customer_service import CustomerService
from services.firestore_service import (
    ATTENDANCE,
    BOOKINGS,
    CUSTOMERS,
    PARTNER_FORMS,
    PARTNER_KIT_LOANS,
    REVIEWS,
    WALLET_IN_RECORDS,
    WALLET_OVERALL,
    FirestoreService,
    as_datetime,
    snapshot_to_dict,
    sort_key_for,
)
from services.hydration import ReferenceHydrator, ref_id
from services.listing import build_search_text, filter_by_search, paginate

logger = logging.getLogger(__name__)

PARTNER_TYPES = ("all", "provider", "agency")
ONBOARDED = "Onboarded"
WALLET_HISTORY_LIMIT = 200
EARNINGS_MONTHS = 6
ATTENDANCE_PRESENT = "Present"

FUEL_BILLS = (
    (1, "FirstBill", "FirstBillAmount", "FirstNote"),
    (2, "SecondBill", "SecondBillAmount", "SecondNote"),
)

# Onboarding form fields and their display names
DOCUMENT_FIELDS = (
    ("aadhaarFront", "Aadhaar Card (Front)"),
    ("aadhaarBack", "Aadhaar Card (Back)"),
    ("panCard", "PAN Card"),
    ("photo", "Photo"),
    ("certifications", "Certifications"),
    ("bankPassbook", "Bank Passbook"),
    ("policeVerification", "Police Verification"),
    ("certification", "Service Certification"),
    ("medicalCertificate", "Medical Certificate"),
    ("electricityBill", "Electricity Bill"),
    ("rentAgreement", "Rent Agreement"),
    ("PartnerSign", "Partner Signature"),
)


def previous_month(when: datetime) -> tuple:
    year, month = divmod(when.year * 12 + when.month - 2, 12)
    return year, month + 1


def attendance_summary(start_times: List[datetime], today: date, tz: tzinfo) -> Dict[str, Any]:
    """Present and absent days from the 1st of the month up to today.

    The range stops at the last present day when that is earlier than today.
    """
    summary: Dict[str, Any] = {"present": 0, "absent": 0, "total": 0, "absent_dates": [], "from": None, "to": None}
    present_days = {t.astimezone(tz).date() for t in start_times if t is not None}
    if not present_days:
        return summary

    range_start = today.replace(day=1)
    range_end = min(max(present_days), today)
    days = [range_start + timedelta(days=i) for i in range((range_end - range_start).days + 1)]
    absent = [d for d in days if d not in present_days]
    summary.update({
        "present": len(days) - len(absent),
        "absent": len(absent),
        "total": len(days),
        "absent_dates": [d.isoformat() for d in absent],
        "from": range_start.isoformat(),
        "to": range_end.isoformat(),
    })
    return summary


class PartnerService:
    """Service for the partner views of the dashboard"""

    def __init__(
        self,
        firestore_service: FirestoreService,
        customer_service: Optional[CustomerService] = None,
        hydrator: Optional[ReferenceHydrator] = None
    ):
        self.firestore_service = firestore_service
        self.customer_service = customer_service or CustomerService(firestore_service)
        self.hydrator = hydrator or ReferenceHydrator(firestore_service, name_keys=PARTNER_NAME_KEYS)
        self.customers_collection = firestore_service.collection(CUSTOMERS)

    def _first(self, collection_name: str, field: str, value: Any) -> Optional[Dict[str, Any]]:
        query = self.firestore_service.collection(collection_name).where(filter=FieldFilter(field, "==", value)).limit(1)
        for doc in query.stream():
            return snapshot_to_dict(doc)
        return None

    # Directory

    def list_partners(self, search: Optional[str] = None, partner_type: Optional[str] = "all") -> List[Dict[str, Any]]:
        """Onboarded service providers and agency partners"""
        partner_type = (partner_type or "all").lower()
        if partner_type not in PARTNER_TYPES:
            raise ValueError(f"Unknown partner type: {partner_type}")

        rows: List[Dict[str, Any]] = []
        sources = (("provider", "userType.provider"), ("agency", "userType.AgencyPartner"))
        try:
            for kind, flag in sources:
                query = self.customers_collection.where(filter=FieldFilter(flag, "==", True)).where(
                    filter=FieldFilter("partner_status", "==", ONBOARDED)
                )
                for doc in query.stream():
                    data = snapshot_to_dict(doc)
                    rows.append({
                        "id": data["id"],
                        "display_name": data.get("display_name") or "Unknown",
                        "phone_number": data.get("phone_number") or "N/A",
                        "type": kind,
                        "partner_status": data.get("partner_status"),
                        "photo_url": data.get("photo_url"),
                        "created_time": data.get("created_time"),
                    })
        except Exception as e:
            logger.error(f"Error fetching partners: {e}")
            return []

        rows = filter_by_search(rows, search, lambda r: build_search_text([r["display_name"], r["phone_number"]]))
        if partner_type != "all":
            rows = [r for r in rows if r["type"] == partner_type]
        return rows

    # Top partners

    def get_top_partners(self) -> List[Dict[str, Any]]:
        """Tracked partners ranked by wallet earnings"""
        fs = self.firestore_service
        try:
            partners = fs.fetch_documents_by_ids(self.customers_collection, settings.TRACKED_PARTNER_IDS)
            refs = [fs.customer_ref(p["id"]) for p in partners]

            wallets = {}
            for w in fs.query_in_chunks(fs.collection(WALLET_OVERALL), "service_partner_id", refs):
                pid = ref_id(w.get("service_partner_id"))
                if pid:
                    wallets[pid] = w

            totals: Counter = Counter()
            completed: Counter = Counter()
            for b in fs.query_in_chunks(fs.collection(BOOKINGS), "provider_id", refs):
                pid = ref_id(b.get("provider_id"))
                totals[pid] += 1
                if (b.get("status") or "").lower() == STATUS_COMPLETED.lower():
                    completed[pid] += 1

            ratings: Dict[str, List[float]] = defaultdict(list)
            for r in fs.query_in_chunks(fs.collection(REVIEWS), "partnerId", refs):
                rating = amount(r.get("partnerRating"))
                if rating > 0:
                    ratings[ref_id(r.get("partnerId"))].append(rating)
        except Exception as e:
            logger.error(f"Error fetching top partners: {e}")
            return []

        result = []
        for partner in partners:
            pid = partner["id"]
            wallet = wallets.get(pid, {})
            scores = ratings.get(pid, [])
            result.append({
                "id": pid,
                "name": partner.get("display_name") or "Unknown",
                "total_bookings": totals.get(pid, 0),
                "completed_bookings": completed.get(pid, 0),
                "earnings": amount(wallet.get("TotalAmountComeIn_Wallet")),
                "pending_payouts": amount(wallet.get("total_balance")),
                "avg_rating": sum(scores) / len(scores) if scores else 0,
            })
        return sorted(result, key=lambda p: p["earnings"], reverse=True)

    # Earnings

    def wallet_transactions(self, partner_id: str) -> List[Dict[str, Any]]:
        """Positive wallet credits of a partner, newest first"""
        query = self.firestore_service.collection(WALLET_IN_RECORDS).where(
            filter=FieldFilter("partnerId", "==", self.firestore_service.customer_ref(partner_id))
        )
        records = self.firestore_service.stream_ordered(query, "Timestamp", limit=WALLET_HISTORY_LIMIT)
        transactions = [
            {
                "id": r["id"],
                "amount": amount(r.get("payment_in_wallet")),
                "date": as_datetime(r.get("Timestamp")),
                "partner_id": ref_id(r.get("partnerId")) or partner_id,
                "user_type": r.get("user_type") or "customer",
                "status": "Completed",
                "description": "Wallet credit",
                "booking_id": ref_id(r.get("bookingId")) or None,
            }
            for r in records
            if amount(r.get("payment_in_wallet")) > 0
        ]
        transactions.sort(key=sort_key_for("date"), reverse=True)
        return transactions

    def get_partner_earnings(self, partner_id: str, month_offset: int = 0, now: Optional[datetime] = None) -> Dict[str, Any]:
        ref = self.firestore_service.customer_ref(partner_id)
        now = now or datetime.now(dashboard_tz())
        result = {
            "total_earnings": 0,
            "current_balance": 0,
            "pending_payouts": 0,
            "loan_recovered_amount": 0,
            "net_earnings": 0,
            "this_month_earnings": 0,
            "monthly_growth": 0,
            "transactions": [],
            "monthly": [],
        }
        try:
            wallet = self._first(WALLET_OVERALL, "service_partner_id", ref) or {}
            loan = self._first(PARTNER_KIT_LOANS, "partnerId", ref) or {}
            transactions = self.wallet_transactions(partner_id)
        except Exception as e:
            logger.error(f"Error fetching earnings data for {partner_id}: {e}")
            return result

        total = amount(wallet.get("TotalAmountComeIn_Wallet"))
        recovered = amount(loan.get("loanRecoveredAmount"))

        def month_total(year: int, month: int) -> float:
            total_for_month = 0
            for t in transactions:
                if t["date"] is None:
                    continue
                local = t["date"].astimezone(now.tzinfo)
                if (local.year, local.month) == (year, month):
                    total_for_month += t["amount"]
            return total_for_month

        this_month = month_total(now.year, now.month)
        last_month = month_total(*previous_month(now))
        if last_month > 0:
            growth = (this_month - last_month) / last_month * 100
        elif this_month > 0:
            growth = 100
        else:
            growth = 0

        monthly = bucket_by_month(
            transactions,
            lambda t: t["date"],
            {"amount": lambda t: t["amount"]},
            month_buckets(EARNINGS_MONTHS, month_offset, now),
        )

        result.update({
            "total_earnings": total,
            "current_balance": amount(wallet.get("total_balance")),
            "pending_payouts": amount(wallet.get("pending_amount")),
            "loan_recovered_amount": recovered,
            "net_earnings": total + recovered,
            "this_month_earnings": this_month,
            "monthly_growth": growth,
            "transactions": transactions,
            "monthly": monthly,
        })
        return result

    # Credits, loans, reviews

    def get_partner_credits(self, partner_id: str) -> Dict[str, Any]:
        return self.customer_service.get_credits(partner_id)

    def get_partner_loan(self, partner_id: str) -> Optional[Dict[str, Any]]:
        """The partner's kit loan and the bookings it was recovered from"""
        try:
            loan = self._first(PARTNER_KIT_LOANS, "partnerId", self.firestore_service.customer_ref(partner_id))
        except Exception as e:
            logger.error(f"Error fetching loan for {partner_id}: {e}")
            return None
        if not loan:
            return None

        bookings = [
            {
                "booking_id": b.get("bookingid"),
                "booking_name": b.get("bookingName"),
                "partner_fare": amount(b.get("partnerfare")),
                "booking_date": b.get("bookingDate"),
                "loan_amount": amount(b.get("loanAmount")),
                "loan_percentage": amount(b.get("loanPercentage")),
            }
            for b in loan.get("bookingDetails") or []
        ]
        bookings.sort(key=sort_key_for("booking_date"), reverse=True)
        return {
            "id": loan["id"],
            "loan_amount": amount(loan.get("loanAmount")),
            "loan_status": loan.get("loanStatus") or "active",
            "amount_paid": amount(loan.get("amountPaid")),
            "loan_recovery_percentage": amount(loan.get("loanRecoveryPercentage")),
            "loan_start_date": loan.get("loanStartDate"),
            "kit_name": loan.get("kitName"),
            "kit_amount": amount(loan.get("kit_amount")),
            "remaining_amount": amount(loan.get("LoanRemainingAmount")),
            "recovered_amount": amount(loan.get("loanRecoveredAmount")),
            "bookings": bookings,
        }

    def get_partner_reviews(self, partner_id: str) -> Dict[str, Any]:
        """Rated reviews of one partner with average and star distribution"""
        try:
            reviews = [
                snapshot_to_dict(doc)
                for doc in self.firestore_service.collection(REVIEWS).where(
                    filter=FieldFilter("partnerId", "==", self.firestore_service.customer_ref(partner_id))
                ).stream()
            ]
        except Exception as e:
            logger.error(f"Error fetching reviews for {partner_id}: {e}")
            reviews = []

        rated = [r for r in reviews if amount(r.get("partnerRating")) > 0]
        customers = self.hydrator.hydrate([r.get("customerId") for r in rated], fallback="Anonymous")
        rows = [
            {
                "id": r["id"],
                "customer_name": self.hydrator.label_for(customers, r.get("customerId"), "Anonymous").name,
                "rating": amount(r.get("partnerRating")),
                "feedback": r.get("feedback") or r.get("comment") or "",
                "created_at": r.get("timestamp") or r.get("createdAt"),
            }
            for r in rated
        ]
        rows.sort(key=sort_key_for("created_at"), reverse=True)

        distribution = Counter(int(round(r["rating"])) for r in rows)
        return {
            "reviews": rows,
            "average_rating": round(sum(r["rating"] for r in rows) / len(rows), 2) if rows else 0,
            "total_reviews": len(rows),
            "distribution": {str(star): distribution.get(star, 0) for star in range(1, 6)},
        }

    # Attendance, fuel, documents

    @staticmethod
    def attendance_row(record: Dict[str, Any], tz: tzinfo) -> Dict[str, Any]:
        start = as_datetime(record.get("startTime"))
        timeslot = record.get("tmeslot") or {}
        times = timeslot.get("timelist") or []
        statuses = timeslot.get("status") or []
        return {
            "id": record["id"],
            "start_time": start,
            "date": start.astimezone(tz).date().isoformat() if start else None,
            "status": record.get("status"),
            "slots": [
                {"time": slot, "status": statuses[i] if i < len(statuses) else "unknown"}
                for i, slot in enumerate(times)
            ],
        }

    def get_partner_attendance(
        self,
        partner_id: str,
        search: Optional[str] = None,
        page: int = 1,
        page_size: Optional[int] = None,
        today: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Present-day records of a partner, oldest first, with the month-to-date summary"""
        tz = dashboard_tz()
        today = (today or datetime.now(tz)).astimezone(tz).date()
        query = self.firestore_service.collection(ATTENDANCE).where(
            filter=FieldFilter("partnerid", "==", self.firestore_service.customer_ref(partner_id))
        ).where(filter=FieldFilter("status", "==", ATTENDANCE_PRESENT))
        try:
            records = [snapshot_to_dict(doc) for doc in query.stream()]
        except Exception as e:
            logger.error(f"Error fetching attendance for {partner_id}: {e}")
            records = []
        records.sort(key=sort_key_for("startTime"))

        rows = [self.attendance_row(r, tz) for r in records]
        summary = attendance_summary([r["start_time"] for r in rows], today, tz)
        rows = filter_by_search(rows, search, lambda r: build_search_text([r["id"], r["date"], r["status"]]))
        return {"page": paginate(rows, page, page_size or settings.DEFAULT_PAGE_SIZE), "summary": summary}

    def get_partner_fuel(self, partner_id: str, from_date: Optional[str] = None, to_date: Optional[str] = None) -> Dict[str, Any]:
        """Fuel bills attached to a partner's bookings, newest booking first"""
        query = self.firestore_service.collection(BOOKINGS).where(
            filter=FieldFilter("provider_id", "==", self.firestore_service.customer_ref(partner_id))
        )
        for date_filter in optional_date_filters("date", from_date, to_date):
            query = query.where(filter=date_filter)
        try:
            bookings = [snapshot_to_dict(doc) for doc in query.stream()]
        except Exception as e:
            logger.error(f"Error fetching fuel expenses for {partner_id}: {e}")
            bookings = []

        expenses = []
        for booking in bookings:
            entries = booking.get("partnerFuel")
            if not isinstance(entries, list):
                continue
            for index, fuel in enumerate(entries):
                if not isinstance(fuel, dict):
                    continue
                for number, bill_key, amount_key, note_key in FUEL_BILLS:
                    if not (fuel.get(bill_key) or fuel.get(amount_key)):
                        continue
                    expenses.append({
                        "id": f"{booking['id']}-{index}-{number}",
                        "booking_id": booking["id"],
                        "booking_date": as_datetime(booking.get("timeSlot")),
                        "partner_name": booking.get("provider_name") or "Unknown Partner",
                        "bill_image": fuel.get(bill_key) or "",
                        "bill_amount": amount(fuel.get(amount_key)),
                        "note": fuel.get(note_key) or "",
                        "bill_number": number,
                    })
        expenses.sort(key=sort_key_for("booking_date"), reverse=True)
        return {
            "expenses": expenses,
            "total_expense": sum(e["bill_amount"] for e in expenses),
            "bill_count": len(expenses),
        }

    def get_partner_documents(self, partner_id: str) -> Optional[Dict[str, Any]]:
        """Onboarding documents from the partner's form; None when no form exists"""
        form = self.firestore_service.get_document(PARTNER_FORMS, partner_id)
        if not form:
            return None

        documents = [
            {
                "name": name,
                "field_key": key,
                "image_path": form.get(key) or None,
                "status": "verified" if form.get(key) else "not_uploaded",
            }
            for key, name in DOCUMENT_FIELDS
        ]
        return {
            "documents": documents,
            "stats": {
                "total": len(documents),
                "verified": sum(1 for d in documents if d["status"] == "verified"),
                "not_uploaded": sum(1 for d in documents if d["status"] == "not_uploaded"),
            },
        }

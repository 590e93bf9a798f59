"""
Support service: complaint tickets and customer reviews
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from google.cloud import firestore

import sys
from pathlib import Path
sys.path.append(str(Path(__file__).parent.parent))

from services.booking_service import amount
from services.firestore_service import COMPLAINTS, REVIEWS, FirestoreService, sort_key_for
from services.hydration import ReferenceHydrator, ref_id
from services.listing import build_search_text, filter_by_search, filter_by_status

logger = logging.getLogger(__name__)

TICKET_STATUSES = ("open", "in_progress", "resolved", "closed")
TICKET_PRIORITIES = ("low", "medium", "high", "urgent")
UNKNOWN_CUSTOMER = "Unknown Customer"
CUSTOMER_NAME_KEYS = ("display_name", "customer_name", "name", "username")
REVIEWER_NAME_KEYS = ("display_name", "customer_name")


def _contains_any(text: str, words) -> bool:
    return any(word in text for word in words)


def map_complaint_type(complaint: Optional[str]) -> str:
    text = (complaint or "").lower()
    if _contains_any(text, ("refund", "payment", "money")):
        return "refund"
    if _contains_any(text, ("query", "question", "inquiry", "how to")):
        return "query"
    if _contains_any(text, ("technical", "app", "website", "bug", "error")):
        return "technical"
    return "complaint"


def map_complaint_status(status: Optional[str]) -> str:
    text = (status or "").lower()
    if _contains_any(text, ("progress", "pending", "working")):
        return "in_progress"
    if _contains_any(text, ("resolved", "completed", "solved")):
        return "resolved"
    if "closed" in text:
        return "closed"
    return "open"


def determine_priority(status: Optional[str], complaint: Optional[str]) -> str:
    """Priority from keywords in the stored status and the complaint text"""
    status_text = (status or "").lower()
    complaint_text = (complaint or "").lower()
    if _contains_any(status_text, ("urgent", "critical")) or _contains_any(complaint_text, ("urgent", "immediately", "asap")):
        return "urgent"
    if "high" in status_text or _contains_any(complaint_text, ("serious", "major", "refund")):
        return "high"
    if "low" in status_text or _contains_any(complaint_text, ("minor", "question")):
        return "low"
    return "medium"


def extract_description(history: Any, complaint: Optional[str]) -> str:
    """First message of the complaint history, else the complaint text"""
    if isinstance(history, list) and history:
        first = history[0]
        if isinstance(first, dict):
            for key in ("message", "description", "note"):
                if first.get(key):
                    return str(first[key])
        elif first:
            return str(first)
    return complaint or "No description provided"


class SupportService:
    """Service for the support tickets and reviews views"""

    def __init__(self, firestore_service: FirestoreService):
        self.firestore_service = firestore_service
        self.complaints_collection = firestore_service.collection(COMPLAINTS)
        self.reviews_collection = firestore_service.collection(REVIEWS)
        self.customer_hydrator = ReferenceHydrator(firestore_service, name_keys=CUSTOMER_NAME_KEYS)
        self.reviewer_hydrator = ReferenceHydrator(firestore_service, name_keys=REVIEWER_NAME_KEYS)
        self.partner_hydrator = ReferenceHydrator(firestore_service, name_keys=("display_name", "customer_name", "name"))

    # Tickets

    def _customer_refs(self, complaints: List[Dict[str, Any]]) -> Dict[str, Any]:
        refs = {}
        for c in complaints:
            customer_id = ref_id(c.get("customer_id"))
            if customer_id:
                refs[c["id"]] = self.firestore_service.customer_ref(customer_id)
        return refs

    def to_tickets(self, complaints: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        refs = self._customer_refs(complaints)
        # Sentinel fallback so unresolved customers keep the title on the complaint
        names = self.customer_hydrator.hydrate(refs.values(), fallback="")

        tickets = []
        for c in complaints:
            fallback = c.get("customer_title") or UNKNOWN_CUSTOMER
            name = fallback
            if c["id"] in refs:
                name = self.customer_hydrator.label_for(names, refs[c["id"]], "").name or fallback

            history = c.get("complaint_history")
            history = history if isinstance(history, list) else []
            status = map_complaint_status(c.get("complaint_status"))
            assigned_to = history[0].get("assignedTo") if history and isinstance(history[0], dict) else None
            tickets.append({
                "id": c["id"],
                "customer_id": ref_id(c.get("customer_id")) or None,
                "customer_name": name,
                "booking_id": ref_id(c.get("booking_id")) or None,
                "type": map_complaint_type(c.get("customer_complaint")),
                "priority": determine_priority(c.get("complaint_status"), c.get("customer_complaint")),
                "status": status,
                "subject": c.get("customer_complaint") or "No subject",
                "note": c.get("notefrom_Insstanto") or "-",
                "description": extract_description(history, c.get("customer_complaint")),
                "assigned_to": assigned_to,
                "created_at": c.get("date_of_complaint"),
                "updated_at": c.get("timeslot"),
                "resolved_at": c.get("timeslot") if status == "resolved" else None,
                "history": history,
            })
        return tickets

    @staticmethod
    def ticket_search_text(ticket: Dict[str, Any]) -> str:
        return build_search_text([
            ticket["id"],
            ticket["customer_name"],
            ticket["subject"],
            ticket["description"],
            ticket["booking_id"],
        ])

    def list_tickets(
        self,
        search: Optional[str] = None,
        status: Optional[str] = "all",
        priority: Optional[str] = "all"
    ) -> List[Dict[str, Any]]:
        """Complaint tickets, newest first, with classification and filters"""
        for value, allowed, label in ((status, TICKET_STATUSES, "status"), (priority, TICKET_PRIORITIES, "priority")):
            if value and value.lower() != "all" and value.lower() not in allowed:
                raise ValueError(f"Unknown ticket {label}: {value}")

        try:
            complaints = self.firestore_service.stream_ordered(self.complaints_collection, "date_of_complaint")
        except Exception as e:
            logger.error(f"Error fetching support tickets: {e}")
            return []

        tickets = self.to_tickets(complaints)
        tickets = filter_by_search(tickets, search, self.ticket_search_text)
        tickets = filter_by_status(tickets, status, lambda t: t["status"])
        return filter_by_status(tickets, priority, lambda t: t["priority"])

    @staticmethod
    def ticket_summary(tickets: List[Dict[str, Any]]) -> Dict[str, int]:
        summary = {"total": len(tickets)}
        for status in TICKET_STATUSES:
            summary[status] = sum(1 for t in tickets if t["status"] == status)
        summary["urgent"] = sum(1 for t in tickets if t["priority"] == "urgent")
        return summary

    def get_ticket(self, ticket_id: str) -> Optional[Dict[str, Any]]:
        complaint = self.firestore_service.get_document(COMPLAINTS, ticket_id)
        if not complaint:
            return None
        return self.to_tickets([complaint])[0]

    def update_ticket_status(self, ticket_id: str, status: str, note: Optional[str] = None) -> bool:
        """Set the complaint status and append the note to its history"""
        if status not in TICKET_STATUSES:
            raise ValueError(f"Unknown ticket status: {status}")

        data: Dict[str, Any] = {"complaint_status": status}
        if note:
            data["complaint_history"] = firestore.ArrayUnion([{
                "message": note,
                "timestamp": datetime.now(timezone.utc),
                "status": status,
            }])
        return self.firestore_service.update_document(COMPLAINTS, ticket_id, data)

    # Reviews

    def list_reviews(self, partner_ids: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """Rated reviews with customer and partner names, newest first"""
        fs = self.firestore_service
        try:
            if partner_ids:
                refs = [fs.customer_ref(pid) for pid in partner_ids]
                reviews = fs.query_in_chunks(self.reviews_collection, "partnerId", refs)
                reviews.sort(key=sort_key_for("createdAt"), reverse=True)
            else:
                reviews = fs.stream_ordered(self.reviews_collection, "createdAt")
        except Exception as e:
            logger.error(f"Error fetching reviews: {e}")
            return []

        rated = [r for r in reviews if amount(r.get("partnerRating")) > 0]
        customers = self.reviewer_hydrator.hydrate([r.get("customerId") for r in rated], fallback="Anonymous")
        partners = self.partner_hydrator.hydrate([r.get("partnerId") for r in rated], fallback="Unknown Partner")

        return [
            {
                "id": r["id"],
                "customer_id": ref_id(r.get("customerId")) or None,
                "customer_name": self.reviewer_hydrator.label_for(customers, r.get("customerId"), "Anonymous").name,
                "partner_id": ref_id(r.get("partnerId")) or None,
                "partner_name": self.partner_hydrator.label_for(partners, r.get("partnerId"), "Unknown Partner").name,
                "booking_id": ref_id(r.get("bookingId")) or None,
                "rating": amount(r.get("partnerRating")) or amount(r.get("rating")),
                "feedback": r.get("feedback") or r.get("comment") or "",
                "is_public": r.get("isPublic") is not False,
                "created_at": r.get("createdAt"),
            }
            for r in rated
        ]

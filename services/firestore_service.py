"""
Firestore service: collection handles and the query primitives every dashboard view builds on
"""
import logging
from datetime import datetime, time, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from google.cloud import firestore
from google.cloud.firestore import FieldFilter, Query
from google.cloud.firestore_v1.field_path import FieldPath

import sys
from pathlib import Path
sys.path.append(str(Path(__file__).parent.parent))

from config import settings

logger = logging.getLogger(__name__)

# Collection names as they exist in the production project
CUSTOMERS = "customer"
BOOKINGS = "bookings"
BOOKING_DETAILS = "bookingDetails_StartToEnd"
CART = "cart"
REVIEWS = "reviews"
SUBSCRIPTIONS = "Subscription"
WALLET_OVERALL = "Wallet_Overall"
WALLET_IN_RECORDS = "Wallet_In_record"
PARTNER_KIT_LOANS = "PartnerKitLoan"
PARTNER_CREDITS = "partner_overall_credits"
CREDIT_PURCHASES = "credits_purchase_record"
CHEMICAL_SPEND = "chemical_spend_record"
COMPLAINTS = "customer_complain"
COUPONS = "coupon"
ATTENDANCE = "partner_attendence"
PARTNER_FORMS = "form_details"

IN_QUERY_LIMIT = 10


def _get_query_count(query: Query) -> int:
    """Return the total number of documents for a query using aggregation.

    Count aggregation runs server-side and only returns the count, so KPI
    cards do not have to stream every document. If aggregation is unsupported
    (older emulator/SDK) we return -1 and callers fall back to streaming.
    """
    try:
        count_query = query.count()
        results = count_query.get()
        if results and results[0] and hasattr(results[0][0], "value"):
            return int(results[0][0].value)
    except Exception as e:
        logger.warning(f"Count aggregation failed: {e}")
    return -1


def snapshot_to_dict(doc) -> Dict[str, Any]:
    data = doc.to_dict() or {}
    data["id"] = doc.id
    return data


def chunked(values: List[Any], size: int = IN_QUERY_LIMIT) -> Iterable[List[Any]]:
    for i in range(0, len(values), size):
        yield values[i:i + size]


def parse_date(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%d")


def date_bounds(from_date: Optional[str] = None, to_date: Optional[str] = None) -> Tuple[datetime, datetime]:
    """Turn YYYY-MM-DD filter strings into an inclusive UTC range.

    The start is midnight of from_date (DEFAULT_RANGE_START when omitted) and
    the end is 23:59:59 of to_date (now when omitted).
    """
    start_day = parse_date(from_date or settings.DEFAULT_RANGE_START)
    start = datetime.combine(start_day.date(), time.min, tzinfo=timezone.utc)
    if to_date:
        end = datetime.combine(parse_date(to_date).date(), time(23, 59, 59), tzinfo=timezone.utc)
    else:
        end = datetime.now(timezone.utc)
    if start > end:
        raise ValueError(f"from_date {from_date} is after to_date {to_date}")
    return start, end


def as_datetime(value: Any) -> Optional[datetime]:
    """Firestore timestamps arrive as tz-aware datetimes; anything else is ignored."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return None


def sort_key_for(field: str) -> Callable[[Dict[str, Any]], datetime]:
    floor = datetime.min.replace(tzinfo=timezone.utc)

    def key(data: Dict[str, Any]) -> datetime:
        return as_datetime(data.get(field)) or floor

    return key


class FirestoreService:
    """Service for interacting with the dashboard's Firestore project"""

    def __init__(self, client=None):
        """Initialize Firestore client"""
        try:
            self.db = client if client is not None else firestore.Client(project=settings.FIRESTORE_PROJECT_ID)
            self.customers_collection = self.db.collection(CUSTOMERS)
            self.bookings_collection = self.db.collection(BOOKINGS)
            self.reviews_collection = self.db.collection(REVIEWS)
            logger.info(f"Firestore client initialized for project: {settings.FIRESTORE_PROJECT_ID}")
        except Exception as e:
            logger.error(f"Failed to initialize Firestore client: {e}")
            raise

    def collection(self, name: str):
        return self.db.collection(name)

    def reference(self, collection_name: str, document_id: str):
        """DocumentReference for ``collection/document_id``"""
        return self.db.collection(collection_name).document(document_id)

    def customer_ref(self, customer_id: str):
        return self.reference(CUSTOMERS, customer_id)

    def tracked_partner_refs(self) -> List[Any]:
        return [self.customer_ref(pid) for pid in settings.TRACKED_PARTNER_IDS]

    def get_query_count(self, query) -> int:
        return _get_query_count(query)

    def count_or_stream(self, query) -> int:
        """Aggregated count, streaming the query when aggregation is unavailable."""
        total = _get_query_count(query)
        if total < 0:
            total = sum(1 for _ in query.stream())
        return total

    def get_document(self, collection_name: str, document_id: str) -> Optional[Dict[str, Any]]:
        """Get a document by ID"""
        try:
            doc = self.reference(collection_name, document_id).get()
            if doc.exists:
                return snapshot_to_dict(doc)
            return None
        except Exception as e:
            logger.error(f"Failed to get {collection_name}/{document_id}: {e}", exc_info=True)
            return None

    def get_all(self, refs: List[Any]) -> List[Any]:
        """Batched read of several references in one round trip."""
        if not refs:
            return []
        return list(self.db.get_all(refs))

    @staticmethod
    def fetch_documents_by_ids(collection, ids: Iterable[str]) -> List[Dict[str, Any]]:
        """Fetch documents by IDs in chunks using document_id IN queries.

        Firestore limits IN filters to 10 elements, so IDs are batched.
        Document-id filters only accept references, never plain id strings.
        """
        documents: List[Dict[str, Any]] = []
        id_list = list(dict.fromkeys(ids))
        for chunk_ids in chunked(id_list):
            refs = [collection.document(doc_id) for doc_id in chunk_ids]
            query = collection.where(filter=FieldFilter(FieldPath.document_id(), "in", refs))
            for doc in query.stream():
                documents.append(snapshot_to_dict(doc))
        return documents

    def query_in_chunks(self, collection, field: str, values: List[Any], *filters: FieldFilter) -> List[Dict[str, Any]]:
        """Run ``field IN values`` in chunks of 10 and merge the results."""
        results: List[Dict[str, Any]] = []
        for chunk in chunked(list(values)):
            query = collection.where(filter=FieldFilter(field, "in", chunk))
            for extra in filters:
                query = query.where(filter=extra)
            results.extend(snapshot_to_dict(doc) for doc in query.stream())
        return results

    def stream_ordered(
        self,
        query,
        order_field: str,
        descending: bool = True,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Stream a query ordered by a field, falling back once to an unordered read.

        Ordered queries combined with filters need a composite index. When the
        index is missing the ordered stream raises; we then read the filtered
        query without ordering and sort in memory. There is no retry beyond
        this single fallback.
        """
        direction = Query.DESCENDING if descending else Query.ASCENDING
        try:
            ordered = query.order_by(order_field, direction=direction)
            if limit:
                ordered = ordered.limit(limit)
            return [snapshot_to_dict(doc) for doc in ordered.stream()]
        except Exception as order_error:
            logger.debug(f"Ordered query on '{order_field}' failed, sorting in memory: {order_error}")

        fallback = query.limit(limit) if limit else query
        docs = [snapshot_to_dict(doc) for doc in fallback.stream()]
        docs.sort(key=sort_key_for(order_field), reverse=descending)
        return docs

    def query_date_range(
        self,
        collection_name: str,
        field: str,
        start: datetime,
        end: datetime,
        filters: Optional[List[FieldFilter]] = None,
        descending: bool = True
    ) -> List[Dict[str, Any]]:
        """Documents whose ``field`` lies within [start, end], newest first"""
        query = self.collection(collection_name)
        for extra in filters or []:
            query = query.where(filter=extra)
        query = query.where(filter=FieldFilter(field, ">=", start)).where(filter=FieldFilter(field, "<=", end))
        return self.stream_ordered(query, field, descending=descending)

    def update_document(self, collection_name: str, document_id: str, data: Dict[str, Any]) -> bool:
        try:
            self.reference(collection_name, document_id).update(data)
            logger.info(f"Updated {collection_name}/{document_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to update {collection_name}/{document_id}: {e}")
            return False

    def watch(self, query, on_added: Callable[[Dict[str, Any]], None]):
        """Attach a live snapshot listener and forward ADDED documents.

        Returns the watch handle; call ``unsubscribe()`` on it to stop.
        """
        def _on_snapshot(doc_snapshots, changes, read_time):
            for change in changes:
                if change.type.name != "ADDED":
                    continue
                try:
                    on_added(snapshot_to_dict(change.document))
                except Exception as e:
                    logger.error(f"Live update handler failed: {e}")

        return query.on_snapshot(_on_snapshot)

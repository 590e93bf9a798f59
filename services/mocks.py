"""
In-memory Firestore client for local development and tests without GCP
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from google.api_core.exceptions import FailedPrecondition, InvalidArgument, NotFound
from google.cloud.firestore import SERVER_TIMESTAMP, ArrayUnion, Query
from google.cloud.firestore_v1.watch import ChangeType

logger = logging.getLogger(__name__)

DOCUMENT_ID = "__name__"
_MISSING = object()


def _lookup(data: Dict[str, Any], field_path: str) -> Any:
    """Resolve a dotted field path such as ``userType.customer``"""
    value: Any = data
    for part in field_path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _field_path(field: Any) -> str:
    if hasattr(field, "to_api_repr"):
        return field.to_api_repr()
    return str(field)


def _matches(actual: Any, op: str, expected: Any) -> bool:
    if actual is _MISSING:
        return False
    try:
        if op == "==":
            return actual == expected
        if op == "!=":
            return actual != expected
        if op == "in":
            return actual in expected
        if op == "not-in":
            return actual not in expected
        if op == "array_contains":
            return isinstance(actual, list) and expected in actual
        if op == ">=":
            return actual >= expected
        if op == "<=":
            return actual <= expected
        if op == ">":
            return actual > expected
        if op == "<":
            return actual < expected
    except TypeError:
        # Firestore never matches values of different types in range filters
        return False
    raise ValueError(f"Unsupported operator in mock query: {op}")


def _require_references(values: Iterable[Any]) -> None:
    for value in values:
        if not isinstance(value, MockDocumentReference):
            raise InvalidArgument(f"__name__ filter values must be document references, got {value!r}")


class MockAggregationResult:
    def __init__(self, value: int):
        self.value = value


class MockCountQuery:
    def __init__(self, query: "MockQuery"):
        self._query = query

    def get(self):
        return [[MockAggregationResult(len(list(self._query.stream())))]]


class MockDocumentSnapshot:
    def __init__(self, reference: "MockDocumentReference", data: Optional[Dict[str, Any]]):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Optional[Dict[str, Any]]:
        return dict(self._data) if self._data is not None else None


class MockDocumentChange:
    def __init__(self, change_type: ChangeType, document: MockDocumentSnapshot):
        self.type = change_type
        self.document = document


class MockWatch:
    def __init__(self, client: "MockFirestoreClient", query: "MockQuery", callback: Callable):
        self._client = client
        self.query = query
        self.callback = callback
        self.active = True

    def unsubscribe(self):
        self.active = False
        if self in self._client.watches:
            self._client.watches.remove(self)


class MockDocumentReference:
    def __init__(self, client: "MockFirestoreClient", collection_name: str, document_id: str):
        self._client = client
        self.id = document_id
        self.parent = client.collection(collection_name)
        self.path = f"{collection_name}/{document_id}"

    def __eq__(self, other):
        return isinstance(other, MockDocumentReference) and other.path == self.path

    def __hash__(self):
        return hash(self.path)

    def __repr__(self):
        return f"MockDocumentReference({self.path!r})"

    def get(self) -> MockDocumentSnapshot:
        return MockDocumentSnapshot(self, self._client.store.get(self.parent.id, {}).get(self.id))

    def set(self, data: Dict[str, Any]):
        created = self.id not in self._client.store.get(self.parent.id, {})
        self._client.store.setdefault(self.parent.id, {})[self.id] = dict(data)
        if created:
            self._client.notify_added(self)

    def update(self, data: Dict[str, Any]):
        current = self._client.store.get(self.parent.id, {}).get(self.id)
        if current is None:
            raise NotFound(f"No document to update: {self.path}")
        for key, value in data.items():
            if isinstance(value, ArrayUnion):
                existing = list(current.get(key) or [])
                existing.extend(v for v in value.values if v not in existing)
                current[key] = existing
            elif value is SERVER_TIMESTAMP:
                current[key] = datetime.now(timezone.utc)
            else:
                current[key] = value


class MockQuery:
    """Immutable query over one collection of the in-memory store"""

    def __init__(self, client: "MockFirestoreClient", collection_name: str, filters=(), orders=(), limit_to=None):
        self._client = client
        self._collection_name = collection_name
        self._filters = tuple(filters)
        self._orders = tuple(orders)
        self._limit = limit_to

    def _copy(self, **changes) -> "MockQuery":
        state = {"filters": self._filters, "orders": self._orders, "limit_to": self._limit}
        state.update(changes)
        return MockQuery(self._client, self._collection_name, **state)

    def where(self, field_path=None, op_string=None, value=None, *, filter=None) -> "MockQuery":
        if filter is not None:
            field_path, op_string, value = filter.field_path, filter.op_string, filter.value
        return self._copy(filters=self._filters + ((_field_path(field_path), op_string, value),))

    def order_by(self, field_path: str, direction: str = Query.ASCENDING) -> "MockQuery":
        return self._copy(orders=self._orders + ((field_path, direction),))

    def limit(self, count: int) -> "MockQuery":
        return self._copy(limit_to=count)

    def count(self) -> MockCountQuery:
        return MockCountQuery(self._copy(orders=(), limit_to=self._limit))

    def matches(self, document_id: str, data: Dict[str, Any]) -> bool:
        for field, op, expected in self._filters:
            if field == DOCUMENT_ID:
                # Firestore rejects plain strings here, so only references match
                actual: Any = document_id
                if op in ("in", "not-in"):
                    _require_references(expected)
                    expected = [v.id for v in expected if v.parent.id == self._collection_name]
                else:
                    _require_references([expected])
                    expected = expected.id if expected.parent.id == self._collection_name else None
            else:
                actual = _lookup(data, field)
            if not _matches(actual, op, expected):
                return False
        return True

    def stream(self) -> Iterable[MockDocumentSnapshot]:
        if self._filters:
            for field, _ in self._orders:
                if field in self._client.unindexed_order_fields:
                    raise FailedPrecondition(f"The query requires an index (order by {field})")

        docs = [
            (doc_id, data)
            for doc_id, data in self._client.store.get(self._collection_name, {}).items()
            if self.matches(doc_id, data)
        ]
        for field, direction in reversed(self._orders):
            docs = [d for d in docs if _lookup(d[1], field) is not _MISSING]
            docs.sort(key=lambda d: _lookup(d[1], field), reverse=direction == Query.DESCENDING)
        if self._limit is not None:
            docs = docs[:self._limit]

        for doc_id, data in docs:
            ref = MockDocumentReference(self._client, self._collection_name, doc_id)
            yield MockDocumentSnapshot(ref, data)

    def get(self) -> List[MockDocumentSnapshot]:
        return list(self.stream())

    def on_snapshot(self, callback: Callable) -> MockWatch:
        """Deliver the current results as ADDED, then every matching document set later"""
        watch = MockWatch(self._client, self, callback)
        self._client.watches.append(watch)
        docs = list(self.stream())
        callback(docs, [MockDocumentChange(ChangeType.ADDED, d) for d in docs], datetime.now(timezone.utc))
        return watch


class MockCollectionReference(MockQuery):
    def __init__(self, client: "MockFirestoreClient", name: str):
        super().__init__(client, name)
        self.id = name

    def document(self, document_id: Optional[str] = None) -> MockDocumentReference:
        return MockDocumentReference(self._client, self.id, document_id or uuid.uuid4().hex[:20])

    def add(self, data: Dict[str, Any]):
        ref = self.document()
        ref.set(data)
        return datetime.now(timezone.utc), ref


class MockFirestoreClient:
    """Stand-in for ``firestore.Client`` holding collections in memory.

    ``unindexed_order_fields`` makes filtered queries ordered by those fields
    raise ``FailedPrecondition`` the way Firestore does for a missing
    composite index.
    """

    def __init__(self, data: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None, unindexed_order_fields: Iterable[str] = ()):
        self.store: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.unindexed_order_fields = set(unindexed_order_fields)
        self.watches: List[MockWatch] = []
        for collection_name, docs in (data or {}).items():
            for doc_id, doc in docs.items():
                self.store.setdefault(collection_name, {})[doc_id] = dict(doc)
        logger.info("Mock Firestore client initialized")

    def collection(self, name: str) -> MockCollectionReference:
        return MockCollectionReference(self, name)

    def document(self, path: str) -> MockDocumentReference:
        collection_name, document_id = path.split("/", 1)
        return MockDocumentReference(self, collection_name, document_id)

    def get_all(self, references: Iterable[MockDocumentReference]) -> Iterable[MockDocumentSnapshot]:
        for ref in references:
            yield ref.get()

    def notify_added(self, ref: MockDocumentReference):
        snapshot = ref.get()
        for watch in list(self.watches):
            if not watch.active or watch.query._collection_name != ref.parent.id:
                continue
            if watch.query.matches(ref.id, snapshot.to_dict()):
                watch.callback([snapshot], [MockDocumentChange(ChangeType.ADDED, snapshot)], datetime.now(timezone.utc))


def seed_demo_data(client: MockFirestoreClient, partner_ids: List[str]) -> MockFirestoreClient:
    """Small demo dataset so the dashboard renders when running with mock services"""
    now = datetime.now(timezone.utc)
    customers = client.collection("customer")
    partner_refs = []
    for idx, pid in enumerate(partner_ids):
        ref = customers.document(pid)
        ref.set({
            "display_name": f"Partner {idx + 1}",
            "phone_number": f"+91900000000{idx}",
            "userType": {"provider": True},
            "partner_status": "Onboarded",
            "created_time": now - timedelta(days=90),
        })
        partner_refs.append(ref)
        client.collection("Wallet_Overall").document(f"wallet-{pid}").set({
            "service_partner_id": ref,
            "TotalAmountComeIn_Wallet": 10000 * (idx + 1),
            "total_balance": 1500 * (idx + 1),
            "pending_amount": 500,
        })

    customer_refs = []
    for idx in range(3):
        ref = customers.document(f"demo-customer-{idx + 1}")
        ref.set({
            "customer_name": f"Customer {idx + 1}",
            "email": f"customer{idx + 1}@example.com",
            "phone_number": f"+91800000000{idx}",
            "userType": {"customer": True},
            "Subscription": "Active" if idx == 0 else "Inactive",
            "referralCode": f"REF{idx + 1}",
            "created_time": now - timedelta(days=10 * (idx + 1)),
        })
        customer_refs.append(ref)

    sub_category = client.collection("subCategoryCart").document("demo-subcategory-1")
    sub_category.set({"service_name": "Deep Cleaning"})
    client.collection("cart").document("demo-cart-1").set({
        "service_name": "Deep Cleaning",
        "subCategoryCartId": sub_category,
    })
    statuses = ("Service_Completed", "Pending", "Accepted", "Service_Completed", "Cancelled")
    for idx, status in enumerate(statuses):
        client.collection("bookings").document(f"demo-booking-{idx + 1}").set({
            "status": status,
            "date": now - timedelta(days=idx),
            "timeSlot": now - timedelta(days=idx, hours=3),
            "amount_paid": 1200 + 100 * idx,
            "walletAmountUsed": 50,
            "discount_amount": 100,
            "customer_id": customer_refs[idx % len(customer_refs)],
            "provider_id": partner_refs[idx % len(partner_refs)] if partner_refs else None,
            "subCategoryCart_id": [sub_category],
            "bookingAddress": "12 MG Road",
            "city": "Bengaluru",
            "partnerFuel": [{"FirstBillAmount": 150 + 10 * idx, "FirstNote": "Petrol"}],
        })

    for idx, ref in enumerate(partner_refs):
        client.collection("partner_attendence").document(f"demo-attendance-{idx + 1}").set({
            "partnerid": ref,
            "status": "Present",
            "startTime": now - timedelta(hours=idx + 1),
        })
        client.collection("form_details").document(ref.id).set({
            "aadhaarFront": f"https://files.example.com/{ref.id}/aadhaar-front.jpg",
            "panCard": f"https://files.example.com/{ref.id}/pan.jpg",
        })

    for idx, ref in enumerate(partner_refs):
        client.collection("reviews").document(f"demo-review-{idx + 1}").set({
            "partnerId": ref,
            "customerId": customer_refs[0],
            "partnerRating": 4 + idx % 2,
            "feedback": "Great service",
            "createdAt": now - timedelta(days=idx),
        })

    client.collection("coupon").document("demo-coupon-1").set({
        "coupon_code": "WELCOME10",
        "percentage": 10,
        "status": "Unused",
        "usedCount": 3,
        "expire_date": now + timedelta(days=30),
    })
    client.collection("customer_complain").document("demo-ticket-1").set({
        "customer_id": customer_refs[0].id,
        "customer_title": "Customer 1",
        "customer_complaint": "Refund not received for cancelled booking",
        "complaint_status": "pending",
        "date_of_complaint": now - timedelta(days=1),
        "complaint_history": [],
    })
    logger.info("Mock: seeded demo data")
    return client

"""
Tests for reference hydration and JSON conversion
"""
from datetime import datetime, timezone
from decimal import Decimal

from services.hydration import DisplayInfo, ReferenceHydrator, display_name, ref_id, unique_refs
from services.json_utils import to_jsonable


class FailingStore:
    def get_all(self, refs):
        raise RuntimeError("backend unavailable")


def test_display_name_prefers_first_present_key():
    assert display_name({"display_name": "Dee", "name": "D"}) == "Dee"
    assert display_name({"customer_name": "", "username": "dee99"}) == "dee99"
    assert display_name({}, fallback="Anonymous") == "Anonymous"
    assert display_name(None) == "Unknown"


def test_ref_id_accepts_strings_and_references(mock_client):
    assert ref_id("cust-1") == "cust-1"
    assert ref_id(mock_client.collection("customer").document("cust-2")) == "cust-2"
    assert ref_id(None) == ""


def test_unique_refs_deduplicates_by_path(mock_client):
    a = mock_client.collection("customer").document("cust-1")
    b = mock_client.collection("customer").document("cust-1")
    c = mock_client.collection("customer").document("cust-2")
    assert [r.path for r in unique_refs([a, None, b, c, ""])] == ["customer/cust-1", "customer/cust-2"]


def test_hydrate_maps_exactly_the_requested_paths(firestore_service, mock_client):
    customers = mock_client.collection("customer")
    refs = [customers.document("cust-1"), customers.document("cust-1"), customers.document("nobody"), None]

    lookup = ReferenceHydrator(firestore_service).hydrate(refs)

    assert set(lookup) == {"customer/cust-1", "customer/nobody"}
    assert lookup["customer/cust-1"] == DisplayInfo(name="Anil Kumar", phone="+919000000001")
    assert lookup["customer/nobody"] == DisplayInfo(name="Unknown")


def test_hydrate_uses_contact_number_when_phone_missing(firestore_service, mock_client):
    ref = mock_client.collection("customer").document("cust-2")
    lookup = ReferenceHydrator(firestore_service).hydrate([ref])
    assert lookup[ref.path].phone == "9000000002"


def test_hydrate_failure_falls_back_for_every_reference(mock_client):
    refs = [mock_client.collection("customer").document(i) for i in ("cust-1", "cust-2")]
    lookup = ReferenceHydrator(FailingStore()).hydrate(refs, fallback="Unknown Partner")
    assert {info.name for info in lookup.values()} == {"Unknown Partner"}
    assert len(lookup) == 2


def test_label_for_unrequested_reference(firestore_service, mock_client):
    hydrator = ReferenceHydrator(firestore_service)
    info = hydrator.label_for({}, mock_client.collection("customer").document("cust-1"), "Anonymous")
    assert info.name == "Anonymous"


def test_to_jsonable_converts_firestore_values(mock_client):
    when = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    data = {
        "ref": mock_client.collection("customer").document("cust-1"),
        "when": when,
        "price": Decimal("12.50"),
        "count": Decimal("3"),
        "nested": [{"info": DisplayInfo(name="A")}],
    }
    assert to_jsonable(data) == {
        "ref": "customer/cust-1",
        "when": "2026-01-02T03:04:05+00:00",
        "price": 12.5,
        "count": 3,
        "nested": [{"info": {"name": "A", "phone": None}}],
    }

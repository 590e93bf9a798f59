"""
Shared fixtures: an in-memory Firestore project seeded with a small marketplace
"""
import os
import sys
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

# Tests never talk to a real Firestore project
os.environ.setdefault("USE_MOCK_SERVICES", "true")
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from config import settings
from services.customer_service import today_bounds
from services.firestore_service import FirestoreService
from services.mocks import MockFirestoreClient

IST = ZoneInfo("Asia/Kolkata")
P1, P2, P3 = settings.TRACKED_PARTNER_IDS[:3]
OTHER_PARTNER = "partner-other"

# Fixed clock for month-bucket calculations
EARNINGS_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=IST)


def build_dataset():
    now = datetime.now(timezone.utc)
    today_start, _ = today_bounds()
    client = MockFirestoreClient()

    def ref(collection, doc_id):
        return client.collection(collection).document(doc_id)

    def customer(doc_id):
        return ref("customer", doc_id)

    customers = {
        P1: {
            "display_name": "Asha Provider",
            "phone_number": "+911111111111",
            "userType": {"provider": True},
            "partner_status": "Onboarded",
            "created_time": now - timedelta(days=200),
        },
        P2: {
            "display_name": "Ravi Agency",
            "phone_number": "+912222222222",
            "userType": {"AgencyPartner": True},
            "partner_status": "Onboarded",
            "created_time": now - timedelta(days=150),
        },
        P3: {
            "display_name": "Meera Provider",
            "userType": {"provider": True},
            "partner_status": "Pending",
            "created_time": now - timedelta(days=20),
        },
        "cust-1": {
            "customer_name": "Anil Kumar",
            "email": "anil@example.com",
            "phone_number": "+919000000001",
            "userType": {"customer": True},
            "Subscription": "Active",
            "referralCode": "ANIL10",
            "location": {"latitude": 12.9716, "longitude": 77.5946},
            "created_time": now - timedelta(days=3),
        },
        "cust-2": {
            "customer_name": "Bela Shah",
            "contact_no": "9000000002",
            "userType": {"customer": True},
            "Subscription": "Inactive",
            "referralBy": "ANIL10",
            "created_time": now - timedelta(days=5),
        },
        "cust-3": {
            "display_name": "Chirag",
            "userType": {"customer": True},
            "referralBy": "ANIL10",
            "created_time": today_start,
        },
    }
    for doc_id, data in customers.items():
        customer(doc_id).set(data)

    sub1 = ref("subCategoryCart", "sub-1")
    sub2 = ref("subCategoryCart", "sub-2")
    sub1.set({"service_name": "Deep Cleaning"})
    sub2.set({"service_name": "Pest Control"})
    ref("cart", "cart-1").set({"subCategoryCartId": sub1, "service_name": "Deep Cleaning"})
    ref("cart", "cart-2").set({"subCategoryCartId": sub2, "serviceName": "Pest Control"})

    bookings = {
        "b1": {
            "customer_id": customer("cust-1"), "provider_id": customer(P1), "status": "Service_Completed",
            "date": now - timedelta(days=2), "timeSlot": datetime(2026, 3, 10, 12, 30, tzinfo=timezone.utc),
            "amount_paid": 1000, "walletAmountUsed": 100, "discount_amount": 50,
            "subCategoryCart_id": [sub1], "bookingAddress": "MG Road", "city": "Bengaluru",
            "provider_name": "Asha Provider",
            "partnerFuel": [{"FirstBill": "https://files.example.com/fuel/b1-1.jpg", "FirstBillAmount": 120,
                             "FirstNote": "Petrol", "SecondBillAmount": 80}],
        },
        "b2": {
            "customer_id": customer("cust-1"), "provider_id": customer(P2), "status": "Service_Completed",
            "date": now - timedelta(days=1), "timeSlot": datetime(2026, 2, 5, 12, 45, tzinfo=timezone.utc),
            "amount_paid": 500, "subCategoryCart_id": sub2, "city": "Pune",
        },
        "b3": {
            "customer_id": customer("cust-2"), "provider_id": customer(P1), "status": "Pending",
            "date": now - timedelta(days=3), "amount_paid": 700,
        },
        "b4": {
            "customer_id": customer("cust-2"), "provider_id": customer(P1), "status": "Accepted",
            "date": now - timedelta(days=4), "amount_paid": 300,
        },
        "b5": {
            "customer_id": customer("cust-3"), "provider_id": customer(OTHER_PARTNER), "status": "Cancelled",
            "date": now - timedelta(days=1, hours=1), "amount_paid": 200,
        },
        "b6": {
            "customer_id": customer("cust-2"), "provider_id": customer(P2), "status": "Booking_Cancelled by true",
            "date": now - timedelta(days=6),
        },
        "b7": {
            "customer_id": customer("cust-3"), "provider_id": customer(P1), "status": "Service_Completed",
            "date": now - timedelta(days=7), "timeSlot": datetime(2026, 1, 20, 4, 30, tzinfo=timezone.utc),
            "amount_paid": 800, "subCategoryCart_id": [sub1],
            "partnerFuel": [{"FirstBill": "https://files.example.com/fuel/b7-1.jpg", "FirstBillAmount": 50}, None],
        },
    }
    for doc_id, data in bookings.items():
        ref("bookings", doc_id).set(data)

    ref("bookingDetails_StartToEnd", "d1").set({
        "bookingId": ref("bookings", "b1"),
        "serviceStartTime": now - timedelta(days=2),
    })

    reviews = {
        "r1": {"partnerId": customer(P1), "customerId": customer("cust-1"), "partnerRating": 5,
               "feedback": "Excellent", "createdAt": now - timedelta(days=1)},
        "r2": {"partnerId": customer(P1), "customerId": customer("cust-2"), "partnerRating": 4,
               "comment": "Good", "createdAt": now - timedelta(days=2)},
        "r3": {"partnerId": customer(P2), "customerId": customer("cust-missing"), "partnerRating": 0,
               "createdAt": now - timedelta(days=3)},
        "r4": {"partnerId": customer(P2), "customerId": customer("cust-3"), "partnerRating": 3,
               "isPublic": False, "createdAt": now - timedelta(days=4)},
    }
    for doc_id, data in reviews.items():
        ref("reviews", doc_id).set(data)

    ref("Wallet_Overall", "w1").set({
        "service_partner_id": customer(P1), "TotalAmountComeIn_Wallet": 5000,
        "total_balance": 1200, "pending_amount": 300,
    })
    ref("Wallet_Overall", "w2").set({
        "service_partner_id": customer(P2), "TotalAmountComeIn_Wallet": 8000, "total_balance": 400,
    })

    wallet_in = {
        "wi1": (P1, 400, datetime(2026, 3, 2, 10, 0, tzinfo=IST)),
        "wi2": (P1, 600, datetime(2026, 3, 10, 10, 0, tzinfo=IST)),
        "wi3": (P1, 500, datetime(2026, 2, 5, 10, 0, tzinfo=IST)),
        "wi4": (P1, 250, datetime(2026, 1, 20, 10, 0, tzinfo=IST)),
        "wi5": (P1, 0, datetime(2026, 3, 11, 10, 0, tzinfo=IST)),
        "wi6": (P2, 999, datetime(2026, 3, 3, 10, 0, tzinfo=IST)),
    }
    for doc_id, (pid, value, when) in wallet_in.items():
        ref("Wallet_In_record", doc_id).set({
            "partnerId": customer(pid), "payment_in_wallet": value, "Timestamp": when,
            "bookingId": ref("bookings", "b1"), "user_type": "provider",
        })

    ref("PartnerKitLoan", "loan-1").set({
        "partnerId": customer(P1),
        "loanAmount": 3000,
        "amountPaid": 1000,
        "loanRecoveredAmount": 1000,
        "LoanRemainingAmount": 2000,
        "loanRecoveryPercentage": 10,
        "kitName": "Cleaning Kit",
        "kit_amount": 3000,
        "loanStartDate": now - timedelta(days=60),
        "bookingDetails": [
            {"bookingName": "Deep Cleaning", "partnerfare": 800, "bookingDate": now - timedelta(days=7),
             "loanAmount": 80, "loanPercentage": 10, "bookingid": "b7"},
            {"bookingName": "Deep Cleaning", "partnerfare": 900, "bookingDate": now - timedelta(days=2),
             "loanAmount": 90, "loanPercentage": 10, "bookingid": "b1"},
        ],
    })

    ref("partner_overall_credits", "pc1").set({
        "service_partner_id": customer(P1), "credit_balance": 150,
        "expiryDate": now + timedelta(days=60), "user_type": "provider",
    })
    ref("credits_purchase_record", "cp1").set({
        "partnerId": customer(P1), "amount_paid": 500, "credits_purchased": 100,
        "purchase_date": now - timedelta(days=10),
    })
    ref("credits_purchase_record", "cp2").set({
        "partnerId": customer(P1), "amount_paid": 250, "credits_purchased": 50,
        "purchase_date": now - timedelta(days=20),
    })
    ref("chemical_spend_record", "cs1").set({
        "partnerId": customer(P1), "chemical_spend": 75,
        "spend_date": now - timedelta(days=5), "bookingId": ref("bookings", "b1"),
    })

    ref("partner_attendence", "a1").set({"partnerid": customer(P1), "status": "Present", "startTime": now})
    ref("partner_attendence", "a2").set({"partnerid": customer(P2), "status": "Absent", "startTime": now})
    ref("partner_attendence", "a3").set({
        "partnerid": customer(P3), "status": "Present", "startTime": now - timedelta(days=3),
    })
    p1_march = {
        "a4": ("Present", datetime(2026, 3, 2, 9, 0, tzinfo=IST)),
        "a5": ("Present", datetime(2026, 3, 5, 9, 0, tzinfo=IST)),
        "a6": ("Present", datetime(2026, 3, 5, 15, 0, tzinfo=IST)),
        "a7": ("Absent", datetime(2026, 3, 3, 9, 0, tzinfo=IST)),
    }
    for doc_id, (status, when) in p1_march.items():
        ref("partner_attendence", doc_id).set({
            "partnerid": customer(P1), "status": status, "startTime": when,
            "tmeslot": {"timelist": ["09:00 AM", "11:00 AM"], "status": ["booked"]},
        })

    ref("form_details", P1).set({
        "aadhaarFront": "https://files.example.com/p1/aadhaar-front.jpg",
        "panCard": "https://files.example.com/p1/pan.jpg",
        "photo": "",
    })

    ref("customer_complain", "t1").set({
        "customer_id": "cust-1",
        "customer_title": "Anil",
        "customer_complaint": "Refund not processed, please fix asap",
        "complaint_status": "pending",
        "date_of_complaint": now - timedelta(days=1),
        "notefrom_Insstanto": "Called twice",
        "complaint_history": [{"message": "Customer called about refund", "assignedTo": "Ops Team"}],
    })
    ref("customer_complain", "t2").set({
        "customer_id": "cust-gone",
        "customer_title": "Walk-in",
        "customer_complaint": "App shows error on login",
        "complaint_status": "resolved",
        "date_of_complaint": now - timedelta(days=2),
        "timeslot": now - timedelta(days=1),
    })
    ref("customer_complain", "t3").set({"date_of_complaint": now - timedelta(days=3)})

    ref("coupon", "cp-1").set({
        "coupon_code": "WELCOME10", "percentage": 10, "status": "Unused", "usedCount": 3,
        "expire_date": now + timedelta(days=30),
    })
    ref("coupon", "cp-2").set({
        "coupon_code": "SUMMER20", "percentage": 20, "status": "Unused", "usedCount": 2,
        "expire_date": "2020-01-01",
    })
    ref("coupon", "cp-3").set({
        "coupon_code": "USED5", "percentage": 5, "status": "Used", "usedCount": 1,
        "expire_date": now + timedelta(days=5),
    })

    ref("Subscription", "s1").set({
        "customerRef": customer("cust-1"), "Status": "Active", "startDate": now - timedelta(days=10),
        "Savings": 120, "BookingsCount": 2,
    })
    ref("Subscription", "s2").set({
        "customerRef": customer("cust-1"), "Status": "Expired", "startDate": now - timedelta(days=400),
    })
    ref("Subscription", "s3").set({
        "customerRef": customer("cust-2"), "Status": "Expired", "startDate": now - timedelta(days=100),
    })
    return client


@pytest.fixture
def mock_client():
    return build_dataset()


@pytest.fixture
def firestore_service(mock_client):
    return FirestoreService(mock_client)

"""
Coupon service
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import sys
from pathlib import Path
sys.path.append(str(Path(__file__).parent.parent))

from services.booking_service import amount
from services.firestore_service import COUPONS, FirestoreService, as_datetime, parse_date, snapshot_to_dict
from services.hydration import ref_id
from services.listing import build_search_text, filter_by_search

logger = logging.getLogger(__name__)

UNUSED = "Unused"


def expiry_of(coupon: Dict[str, Any]) -> Optional[datetime]:
    """expire_date is a Timestamp on newer coupons and YYYY-MM-DD text on older ones"""
    value = coupon.get("expire_date")
    if isinstance(value, str):
        try:
            return parse_date(value[:10]).replace(hour=23, minute=59, second=59, tzinfo=timezone.utc)
        except ValueError:
            return None
    return as_datetime(value)


def is_active(coupon: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    now = now or datetime.now(timezone.utc)
    expiry = expiry_of(coupon)
    return coupon.get("status") == UNUSED and expiry is not None and expiry >= now


class CouponService:
    """Service for the coupons view"""

    def __init__(self, firestore_service: FirestoreService):
        self.firestore_service = firestore_service
        self.coupons_collection = firestore_service.collection(COUPONS)

    @staticmethod
    def to_row(coupon: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": coupon["id"],
            "code": coupon.get("coupon_code") or "",
            "amount": amount(coupon.get("amount")),
            "percentage": amount(coupon.get("percentage")),
            "status": coupon.get("status") or "",
            "expire_date": coupon.get("expire_date"),
            "assigned_user_id": ref_id(coupon.get("assigned_userId")) or None,
            "user_used": coupon.get("user_used"),
            "used_count": amount(coupon.get("usedCount")),
            "usage_limit": amount(coupon.get("usageLimit")),
        }

    @staticmethod
    def summarize(coupons: List[Dict[str, Any]], now: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            "total_coupons": len(coupons),
            "total_usage": sum(amount(c.get("usedCount")) for c in coupons),
            "total_savings": sum(amount(c.get("usedCount")) * amount(c.get("percentage")) for c in coupons),
            "active_coupons": sum(1 for c in coupons if is_active(c, now)),
        }

    def list_coupons(self, search: Optional[str] = None) -> Dict[str, Any]:
        """Coupon rows filtered by code or status, with the summary cards over all coupons"""
        try:
            coupons = [snapshot_to_dict(doc) for doc in self.coupons_collection.stream()]
        except Exception as e:
            logger.error(f"Error fetching coupons: {e}")
            coupons = []

        rows = [self.to_row(c) for c in coupons]
        rows = filter_by_search(rows, search, lambda r: build_search_text([r["code"], r["status"]]))
        return {"coupons": rows, "summary": self.summarize(coupons)}

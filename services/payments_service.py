"""
Payments service: Razorpay payments and settlements for the payments view
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

import sys
from pathlib import Path
sys.path.append(str(Path(__file__).parent.parent))

from config import settings

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


@dataclass(frozen=True)
class PaymentGatewayError(RuntimeError):
    url: str
    status_code: Optional[int]
    message: str

    def __str__(self) -> str:
        code = self.status_code if self.status_code is not None else "unknown"
        return f"HTTP {code} for {self.url}: {self.message}"


def paise_to_rupees(value: Any) -> float:
    return (value or 0) / 100


class RazorpayClient:
    """Minimal Razorpay REST client with basic auth"""

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None
    ):
        self.key_id = key_id or settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret or settings.RAZORPAY_KEY_SECRET
        self.base_url = (base_url or settings.RAZORPAY_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.RAZORPAY_TIMEOUT
        self.session = session or requests.Session()
        self.session.auth = (self.key_id, self.key_secret)

    def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.get(url, params=params, timeout=float(self.timeout))
        except requests.RequestException as e:
            raise PaymentGatewayError(url=url, status_code=None, message=str(e)) from e
        if resp.status_code // 100 != 2:
            msg = resp.text
            try:
                payload = resp.json() or {}
                error = payload.get("error") or {}
                msg = error.get("description") if isinstance(error, dict) else error
                msg = msg or resp.text
            except ValueError:
                pass
            raise PaymentGatewayError(url=url, status_code=int(resp.status_code), message=str(msg)[:500])
        try:
            return resp.json() or {}
        except ValueError as e:
            raise PaymentGatewayError(url=url, status_code=int(resp.status_code), message=f"Invalid JSON response: {e}") from e

    @staticmethod
    def _range_params(from_ts: Optional[int], to_ts: Optional[int]) -> Dict[str, Any]:
        params: Dict[str, Any] = {"count": PAGE_SIZE}
        if from_ts:
            params["from"] = int(from_ts)
        if to_ts:
            params["to"] = int(to_ts)
        return params

    def list_payments(self, from_ts: Optional[int] = None, to_ts: Optional[int] = None) -> List[Dict[str, Any]]:
        """All payments in the window, paging with skip until a short page"""
        payments: List[Dict[str, Any]] = []
        skip = 0
        while True:
            params = self._range_params(from_ts, to_ts)
            params["skip"] = skip
            items = self._get("/payments", params).get("items") or []
            payments.extend(items)
            if len(items) < PAGE_SIZE:
                break
            skip += PAGE_SIZE
        logger.info(f"Fetched {len(payments)} payments from Razorpay")
        return payments

    def list_settlements(self, from_ts: Optional[int] = None, to_ts: Optional[int] = None) -> List[Dict[str, Any]]:
        """First page of settlements; an unavailable settlements API is not fatal"""
        try:
            return self._get("/settlements", self._range_params(from_ts, to_ts)).get("items") or []
        except PaymentGatewayError as e:
            logger.warning(f"Settlements unavailable: {e}")
            return []


def summarize_payments(payments: List[Dict[str, Any]], settlements: List[Dict[str, Any]]) -> Dict[str, Any]:
    statuses = [(p.get("status") or "").upper() for p in payments]
    return {
        "total_payments": len(payments),
        "successful_payments": statuses.count("CAPTURED"),
        "failed_payments": statuses.count("FAILED"),
        "refunded_payments": statuses.count("REFUNDED"),
        "total_amount": sum(paise_to_rupees(p.get("amount")) for p in payments),
        "total_settlements": len(settlements),
        "total_settlement_amount": sum(paise_to_rupees(s.get("amount")) for s in settlements),
    }

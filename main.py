"""
FastAPI backend for the home-services operations dashboard
Serves bookings, customers, partners, support, coupons, analytics and payments views from Firestore
"""
import asyncio
import json
import logging
from contextlib import asynccontextmanager
from time import time
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import settings
from services.analytics_service import AnalyticsService
from services.booking_service import BookingService
from services.coupon_service import CouponService
from services.customer_service import CustomerService
from services.firestore_service import FirestoreService
from services.hydration import ReferenceHydrator
from services.json_utils import to_jsonable
from services.listing import Page
from services.mocks import MockFirestoreClient, seed_demo_data
from services.partner_service import PartnerService
from services.payments_service import PaymentGatewayError, RazorpayClient, summarize_payments
from services.support_service import SupportService

# Load environment variables
load_dotenv()

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

firestore_service: Optional[FirestoreService] = None
booking_service: Optional[BookingService] = None
customer_service: Optional[CustomerService] = None
partner_service: Optional[PartnerService] = None
support_service: Optional[SupportService] = None
coupon_service: Optional[CouponService] = None
analytics_service: Optional[AnalyticsService] = None
payments_client: Optional[RazorpayClient] = None

# Analytics cache (key -> (response, timestamp))
_analytics_cache: Dict[str, tuple] = {}


def _cleanup_cache(cache: Dict[str, tuple], ttl: int, max_entries: int = 100) -> None:
    """Remove expired and excess cache entries to prevent memory issues"""
    now = time()
    expired_keys = [k for k, (_, ts) in cache.items() if now - ts > ttl]
    for k in expired_keys:
        del cache[k]
    if len(cache) > max_entries:
        sorted_keys = sorted(cache.keys(), key=lambda k: cache[k][1])
        for k in sorted_keys[:len(cache) - max_entries]:
            del cache[k]


def init_services(client=None, razorpay_client: Optional[RazorpayClient] = None) -> None:
    """(Re)build every service on top of one Firestore client.

    With no client, a seeded in-memory client is used when USE_MOCK_SERVICES
    is on, otherwise the real Firestore project from the settings.
    """
    global firestore_service, booking_service, customer_service, partner_service
    global support_service, coupon_service, analytics_service, payments_client

    if client is None and settings.USE_MOCK_SERVICES:
        client = seed_demo_data(MockFirestoreClient(), settings.TRACKED_PARTNER_IDS)
        logger.info("Using mock Firestore client")

    try:
        firestore_service = FirestoreService(client)
        logger.info("Firestore service initialized")
    except Exception as e:
        logger.warning(f"Failed to initialize Firestore service: {e}")
        firestore_service = None

    try:
        if firestore_service:
            hydrator = ReferenceHydrator(firestore_service)
            booking_service = BookingService(firestore_service, hydrator)
            customer_service = CustomerService(firestore_service)
            partner_service = PartnerService(firestore_service, customer_service)
            support_service = SupportService(firestore_service)
            coupon_service = CouponService(firestore_service)
            analytics_service = AnalyticsService(firestore_service)
            logger.info("Dashboard services initialized")
        else:
            booking_service = customer_service = partner_service = None
            support_service = coupon_service = analytics_service = None
    except Exception as e:
        logger.warning(f"Failed to initialize dashboard services: {e}")
        booking_service = customer_service = partner_service = None
        support_service = coupon_service = analytics_service = None

    if razorpay_client is not None:
        payments_client = razorpay_client
    elif settings.razorpay_configured:
        payments_client = RazorpayClient()
        logger.info("Razorpay client initialized")
    else:
        logger.warning("Razorpay credentials not set, payments endpoint disabled")
        payments_client = None

    _analytics_cache.clear()


init_services()


# WebSocket connection manager
class ConnectionManager:
    def __init__(self):
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def send_personal_message(self, message: str, websocket: WebSocket):
        await websocket.send_text(message)


manager = ConnectionManager()


class TicketStatusUpdate(BaseModel):
    status: str
    note: Optional[str] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    print("🚀 Starting Operations Dashboard Backend...")

    if firestore_service:
        print("✅ Firestore service initialized")
    else:
        print("⚠️  Firestore service not initialized")

    if payments_client:
        print("✅ Razorpay client initialized")
    else:
        print("⚠️  Razorpay client not initialized")

    yield

    print("🛑 Shutting down Operations Dashboard Backend...")


# Create FastAPI app
app = FastAPI(
    title="Operations Dashboard API",
    description="Backend API for the home-services operations dashboard",
    version="1.0.0",
    lifespan=lifespan
)

allowed_origins = list(dict.fromkeys(settings.CORS_ORIGINS))

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger.info(f"CORS allowed origins: {allowed_origins}")


def _cors_headers(request: Request) -> Dict[str, str]:
    origin = request.headers.get("origin")
    cors_headers = {}
    if origin and origin in allowed_origins:
        cors_headers["Access-Control-Allow-Origin"] = origin
        cors_headers["Access-Control-Allow-Credentials"] = "true"
    elif not origin:
        # Non-browser clients
        cors_headers["Access-Control-Allow-Origin"] = "*"
    return cors_headers


# Exception handlers to ensure CORS headers are included in error responses
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """HTTPException handler that ensures CORS headers are always present"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=_cors_headers(request)
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler that ensures CORS headers are always present"""
    logger.error(f"Unhandled exception: {type(exc).__name__}: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
        headers=_cors_headers(request)
    )


def _respond(payload: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(content=to_jsonable(payload))


def _paged(key: str, page: Page, **extra) -> JSONResponse:
    data = page.to_dict()
    payload = {"success": True, key: data.pop("items"), "pagination": data}
    payload.update(extra)
    return _respond(payload)


def _cached(cache_key: str) -> Optional[Dict[str, Any]]:
    now = time()
    if cache_key in _analytics_cache:
        cached_data, cached_time = _analytics_cache[cache_key]
        if now - cached_time < settings.ANALYTICS_CACHE_TTL:
            logger.info(f"📊 Returning cached {cache_key} (age: {now - cached_time:.1f}s)")
            return cached_data
    return None


def _store(cache_key: str, response_data: Dict[str, Any]) -> None:
    _analytics_cache[cache_key] = (response_data, time())
    _cleanup_cache(_analytics_cache, settings.ANALYTICS_CACHE_TTL)


# API Routes

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "Operations Dashboard API",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "bookings": "/api/bookings",
            "customers": "/api/customers",
            "subscriptions": "/api/subscriptions",
            "partners": "/api/partners",
            "support": "/api/support/tickets",
            "reviews": "/api/reviews",
            "coupons": "/api/coupons",
            "analytics": "/api/analytics",
            "payments": "/api/payments",
            "websocket": "/ws/bookings"
        }
    }


@app.get("/api/health")
async def health():
    return {
        "status": "healthy" if firestore_service else "degraded",
        "firestore": firestore_service is not None,
        "payments": payments_client is not None,
        "mock": settings.USE_MOCK_SERVICES,
    }


# Bookings

@app.get("/api/bookings")
async def list_bookings(
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
    search: Optional[str] = None,
    status: Optional[str] = None,
    page: int = 1,
    page_size: Optional[int] = None
):
    """Booking management table"""
    if not booking_service:
        raise HTTPException(status_code=503, detail="Booking service not available")
    try:
        result = await asyncio.to_thread(
            booking_service.list_bookings, from_date, to_date, search, status, page, page_size
        )
        return _paged("bookings", result)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/bookings/stats")
async def get_booking_stats(from_date: Optional[str] = None, to_date: Optional[str] = None):
    if not booking_service:
        raise HTTPException(status_code=503, detail="Booking service not available")
    try:
        stats = await asyncio.to_thread(booking_service.get_booking_stats, from_date, to_date)
        return _respond({"success": True, "stats": stats})
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/bookings/{booking_id}")
async def get_booking(booking_id: str):
    if not booking_service:
        raise HTTPException(status_code=503, detail="Booking service not available")
    booking = await asyncio.to_thread(booking_service.get_booking_details, booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail=f"Booking {booking_id} not found")
    return _respond({"success": True, "booking": booking})


@app.websocket("/ws/bookings")
async def bookings_feed(websocket: WebSocket):
    """Live feed of new bookings inside the requested date range"""
    await manager.connect(websocket)
    if not booking_service:
        await websocket.close(code=1011)
        manager.disconnect(websocket)
        return

    loop = asyncio.get_running_loop()
    params = websocket.query_params
    known_ids = {i for i in (params.get("known_ids") or "").split(",") if i}

    def on_booking(row: Dict[str, Any]) -> None:
        # Called on the Firestore watch thread
        message = json.dumps({"type": "booking_added", "booking": to_jsonable(row)})
        asyncio.run_coroutine_threadsafe(manager.send_personal_message(message, websocket), loop)

    try:
        watch = await asyncio.to_thread(
            booking_service.watch_bookings, params.get("from_date"), params.get("to_date"), on_booking, known_ids
        )
    except ValueError as e:
        await websocket.send_text(json.dumps({"type": "error", "detail": str(e)}))
        await websocket.close(code=1003)
        manager.disconnect(websocket)
        return

    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        manager.disconnect(websocket)
    finally:
        watch.unsubscribe()


# Customers

@app.get("/api/customers")
async def list_customers(
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
    search: Optional[str] = None,
    membership: Optional[str] = "all",
    page: int = 1,
    page_size: Optional[int] = None
):
    if not customer_service:
        raise HTTPException(status_code=503, detail="Customer service not available")
    try:
        result = await asyncio.to_thread(
            customer_service.list_customers, from_date, to_date, search, membership, page, page_size
        )
        return _paged("customers", result)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/customers/stats")
async def get_customer_stats(from_date: Optional[str] = None, to_date: Optional[str] = None):
    if not customer_service:
        raise HTTPException(status_code=503, detail="Customer service not available")
    try:
        stats = await asyncio.to_thread(customer_service.get_customer_stats, from_date, to_date)
        return _respond({"success": True, "stats": stats})
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/customers/insights")
async def get_customer_insights(from_date: Optional[str] = None, to_date: Optional[str] = None):
    """New vs repeat customers and the tracked partners' rating"""
    if not customer_service:
        raise HTTPException(status_code=503, detail="Customer service not available")
    try:
        insights = await asyncio.to_thread(customer_service.get_new_vs_repeat, from_date, to_date)
        return _respond({"success": True, "insights": insights})
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/customers/{customer_id}")
async def get_customer(customer_id: str):
    if not customer_service:
        raise HTTPException(status_code=503, detail="Customer service not available")
    customer = await asyncio.to_thread(customer_service.get_customer, customer_id)
    if not customer:
        raise HTTPException(status_code=404, detail=f"Customer {customer_id} not found")
    return _respond({"success": True, "customer": customer})


@app.get("/api/customers/{customer_id}/bookings")
async def list_customer_bookings(customer_id: str, page: int = 1, page_size: Optional[int] = None):
    if not booking_service:
        raise HTTPException(status_code=503, detail="Booking service not available")
    try:
        result = await asyncio.to_thread(booking_service.list_customer_bookings, customer_id, page, page_size)
        return _paged("bookings", result)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/customers/{customer_id}/referrals")
async def get_customer_referrals(customer_id: str):
    if not customer_service:
        raise HTTPException(status_code=503, detail="Customer service not available")
    referrals = await asyncio.to_thread(customer_service.get_referrals, customer_id)
    return _respond({"success": True, "referrals": referrals, "total": len(referrals)})


@app.get("/api/customers/{customer_id}/credits")
async def get_customer_credits(customer_id: str):
    if not customer_service:
        raise HTTPException(status_code=503, detail="Customer service not available")
    credits = await asyncio.to_thread(customer_service.get_credits, customer_id)
    return _respond({"success": True, "credits": credits})


@app.get("/api/subscriptions")
async def list_subscriptions(
    search: Optional[str] = None,
    status: Optional[str] = "all",
    page: int = 1,
    page_size: Optional[int] = None
):
    if not customer_service:
        raise HTTPException(status_code=503, detail="Customer service not available")
    try:
        result = await asyncio.to_thread(customer_service.list_subscriptions, search, status, page, page_size)
        return _paged("subscriptions", result)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# Partners

@app.get("/api/partners")
async def list_partners(search: Optional[str] = None, partner_type: Optional[str] = "all"):
    if not partner_service:
        raise HTTPException(status_code=503, detail="Partner service not available")
    try:
        partners = await asyncio.to_thread(partner_service.list_partners, search, partner_type)
        return _respond({"success": True, "partners": partners, "total": len(partners)})
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/partners/top")
async def get_top_partners():
    """Tracked partners ranked by earnings. Cached."""
    if not partner_service:
        raise HTTPException(status_code=503, detail="Partner service not available")
    cache_key = "top_partners"
    cached = _cached(cache_key)
    if cached is not None:
        return JSONResponse(content=cached)

    partners = await asyncio.to_thread(partner_service.get_top_partners)
    response_data = to_jsonable({"success": True, "partners": partners})
    _store(cache_key, response_data)
    return JSONResponse(content=response_data)


@app.get("/api/partners/{partner_id}/bookings")
async def list_partner_bookings(
    partner_id: str,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
    search: Optional[str] = None,
    status: Optional[str] = None,
    page: int = 1,
    page_size: Optional[int] = None
):
    if not booking_service:
        raise HTTPException(status_code=503, detail="Booking service not available")
    try:
        result = await asyncio.to_thread(
            booking_service.list_partner_bookings, partner_id, from_date, to_date, search, status, page, page_size
        )
        return _paged("bookings", result)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/partners/{partner_id}/earnings")
async def get_partner_earnings(partner_id: str, month_offset: int = Query(0, ge=0)):
    if not partner_service:
        raise HTTPException(status_code=503, detail="Partner service not available")
    earnings = await asyncio.to_thread(partner_service.get_partner_earnings, partner_id, month_offset)
    return _respond({"success": True, "earnings": earnings})


@app.get("/api/partners/{partner_id}/credits")
async def get_partner_credits(partner_id: str):
    if not partner_service:
        raise HTTPException(status_code=503, detail="Partner service not available")
    credits = await asyncio.to_thread(partner_service.get_partner_credits, partner_id)
    return _respond({"success": True, "credits": credits})


@app.get("/api/partners/{partner_id}/loan")
async def get_partner_loan(partner_id: str):
    if not partner_service:
        raise HTTPException(status_code=503, detail="Partner service not available")
    loan = await asyncio.to_thread(partner_service.get_partner_loan, partner_id)
    if not loan:
        raise HTTPException(status_code=404, detail=f"No kit loan for partner {partner_id}")
    return _respond({"success": True, "loan": loan})


@app.get("/api/partners/{partner_id}/reviews")
async def get_partner_reviews(partner_id: str):
    if not partner_service:
        raise HTTPException(status_code=503, detail="Partner service not available")
    reviews = await asyncio.to_thread(partner_service.get_partner_reviews, partner_id)
    return _respond(dict({"success": True}, **reviews))


@app.get("/api/partners/{partner_id}/attendance")
async def get_partner_attendance(partner_id: str, search: Optional[str] = None, page: int = 1, page_size: Optional[int] = None):
    """Present days with the month-to-date present/absent summary"""
    if not partner_service:
        raise HTTPException(status_code=503, detail="Partner service not available")
    try:
        result = await asyncio.to_thread(partner_service.get_partner_attendance, partner_id, search, page, page_size)
        return _paged("attendance", result["page"], summary=result["summary"])
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/partners/{partner_id}/fuel")
async def get_partner_fuel(partner_id: str, from_date: Optional[str] = None, to_date: Optional[str] = None):
    if not partner_service:
        raise HTTPException(status_code=503, detail="Partner service not available")
    try:
        fuel = await asyncio.to_thread(partner_service.get_partner_fuel, partner_id, from_date, to_date)
        return _respond(dict({"success": True}, **fuel))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/partners/{partner_id}/documents")
async def get_partner_documents(partner_id: str):
    if not partner_service:
        raise HTTPException(status_code=503, detail="Partner service not available")
    documents = await asyncio.to_thread(partner_service.get_partner_documents, partner_id)
    if not documents:
        raise HTTPException(status_code=404, detail=f"No onboarding form for partner {partner_id}")
    return _respond(dict({"success": True}, **documents))


# Support

@app.get("/api/support/tickets")
async def list_tickets(search: Optional[str] = None, status: Optional[str] = "all", priority: Optional[str] = "all"):
    if not support_service:
        raise HTTPException(status_code=503, detail="Support service not available")
    try:
        tickets = await asyncio.to_thread(support_service.list_tickets, search, status, priority)
        return _respond({"success": True, "tickets": tickets, "summary": support_service.ticket_summary(tickets)})
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/support/tickets/{ticket_id}")
async def get_ticket(ticket_id: str):
    if not support_service:
        raise HTTPException(status_code=503, detail="Support service not available")
    ticket = await asyncio.to_thread(support_service.get_ticket, ticket_id)
    if not ticket:
        raise HTTPException(status_code=404, detail=f"Ticket {ticket_id} not found")
    return _respond({"success": True, "ticket": ticket})


@app.put("/api/support/tickets/{ticket_id}/status")
async def update_ticket_status(ticket_id: str, update: TicketStatusUpdate):
    if not support_service:
        raise HTTPException(status_code=503, detail="Support service not available")
    ticket = await asyncio.to_thread(support_service.get_ticket, ticket_id)
    if not ticket:
        raise HTTPException(status_code=404, detail=f"Ticket {ticket_id} not found")
    try:
        updated = await asyncio.to_thread(support_service.update_ticket_status, ticket_id, update.status, update.note)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not updated:
        raise HTTPException(status_code=500, detail=f"Failed to update ticket {ticket_id}")
    logger.info(f"🎫 Ticket {ticket_id} moved to {update.status}")
    ticket = await asyncio.to_thread(support_service.get_ticket, ticket_id)
    return _respond({"success": True, "ticket": ticket})


@app.get("/api/reviews")
async def list_reviews(partner_id: Optional[List[str]] = Query(None)):
    if not support_service:
        raise HTTPException(status_code=503, detail="Support service not available")
    reviews = await asyncio.to_thread(support_service.list_reviews, partner_id)
    return _respond({"success": True, "reviews": reviews, "total": len(reviews)})


# Coupons

@app.get("/api/coupons")
async def list_coupons(search: Optional[str] = None):
    if not coupon_service:
        raise HTTPException(status_code=503, detail="Coupon service not available")
    result = await asyncio.to_thread(coupon_service.list_coupons, search)
    return _respond(dict({"success": True}, **result))


# Analytics

@app.get("/api/analytics/top-services")
async def get_top_services(limit: int = Query(5, ge=1, le=50)):
    """Most booked services. Cached."""
    if not analytics_service:
        raise HTTPException(status_code=503, detail="Analytics service not available")
    cache_key = f"top_services_{limit}"
    cached = _cached(cache_key)
    if cached is not None:
        return JSONResponse(content=cached)

    services = await asyncio.to_thread(analytics_service.get_top_services, limit)
    response_data = to_jsonable({"success": True, "services": services})
    _store(cache_key, response_data)
    return JSONResponse(content=response_data)


@app.get("/api/analytics/slots")
async def get_booked_slots():
    """Most booked hour slots. Cached."""
    if not analytics_service:
        raise HTTPException(status_code=503, detail="Analytics service not available")
    cache_key = "booked_slots"
    cached = _cached(cache_key)
    if cached is not None:
        return JSONResponse(content=cached)

    slots = await asyncio.to_thread(analytics_service.get_most_booked_slots)
    response_data = to_jsonable({"success": True, "slots": slots})
    _store(cache_key, response_data)
    return JSONResponse(content=response_data)


@app.get("/api/analytics/revenue")
async def get_revenue(month_offset: int = Query(0, ge=0)):
    """Six months of revenue ending month_offset months ago. Cached."""
    if not analytics_service:
        raise HTTPException(status_code=503, detail="Analytics service not available")
    cache_key = f"revenue_{month_offset}"
    cached = _cached(cache_key)
    if cached is not None:
        return JSONResponse(content=cached)

    revenue = await asyncio.to_thread(analytics_service.get_revenue_by_month, month_offset)
    response_data = to_jsonable({"success": True, "revenue": revenue})
    _store(cache_key, response_data)
    return JSONResponse(content=response_data)


@app.get("/api/analytics/daily-overview")
async def get_daily_overview():
    """Today's attendance and the top partners card, loaded in parallel"""
    if not analytics_service or not partner_service:
        raise HTTPException(status_code=503, detail="Analytics service not available")
    overview, top_partners = await asyncio.gather(
        asyncio.to_thread(analytics_service.get_daily_overview),
        asyncio.to_thread(partner_service.get_top_partners),
    )
    return _respond({"success": True, "overview": overview, "top_partners": top_partners})


# Payments

@app.get("/api/payments")
async def get_payments(
    from_ts: Optional[int] = Query(None, alias="from"),
    to_ts: Optional[int] = Query(None, alias="to")
):
    """Razorpay payments, settlements and summary stats"""
    if not payments_client:
        raise HTTPException(status_code=503, detail="Payments service not available")
    try:
        payments, settlements = await asyncio.gather(
            asyncio.to_thread(payments_client.list_payments, from_ts, to_ts),
            asyncio.to_thread(payments_client.list_settlements, from_ts, to_ts),
        )
    except PaymentGatewayError as e:
        logger.error(f"Payments API error: {e}")
        raise HTTPException(status_code=502, detail="Failed to fetch payments")
    return _respond({
        "success": True,
        "payments": payments,
        "settlements": settlements,
        "stats": summarize_payments(payments, settlements),
    })


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )

"""
Main FastAPI application for the manual order desk.
Serves health, teams, work orders, appeals, stats and metrics.
"""
import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from orderdesk.api.routes import appeals, balance_requests, health, stats, teams, work_orders
from orderdesk.core.config import settings
from orderdesk.core.logging import configure_logging
from orderdesk.services.errors import InsufficientCredit, OrderDeskError
from orderdesk.utils.metrics import router as metrics_router

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Order Desk API",
    description="Team credit ledger and manual website build orders",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = request.headers.get(settings.request_id_header) or uuid.uuid4().hex
    start = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "request_completed",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "latency_ms": round((time.perf_counter() - start) * 1000, 2),
        },
    )
    response.headers[settings.request_id_header] = request_id
    return response


@app.exception_handler(OrderDeskError)
def handle_domain_error(request: Request, exc: OrderDeskError) -> JSONResponse:
    body = {"error": exc.code, "detail": exc.message}
    if isinstance(exc, InsufficientCredit):
        body["required"] = str(exc.required)
        body["available"] = str(exc.available)
    if exc.status_code >= 500:
        logger.warning("request_failed", extra={"path": request.url.path, "error": exc.message})
    return JSONResponse(status_code=exc.status_code, content=body)


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(teams.router)
app.include_router(work_orders.router)
app.include_router(appeals.router)
app.include_router(balance_requests.router)
app.include_router(stats.router)
app.include_router(metrics_router)

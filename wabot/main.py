import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import FastAPI, Response, Request, Depends, Header, HTTPException, status, Query
from pydantic import ValidationError
from sqlalchemy.orm import Session

from wabot.analytics import AnalyticsAggregator, DailyAnalyticsScheduler
from wabot.config import settings
from wabot.errors import PersistenceError, TransportError
from wabot.generation import create_generator
from wabot.logging_utils import setup_logging, RequestLoggingMiddleware, log_webhook_data
from wabot.metrics import record_webhook_result, get_metrics, get_metrics_content_type
from wabot.pipeline import build_pipeline
from wabot.schemas import (
    AnalyticsEntry,
    ErrorResponse,
    HealthResponse,
    StatsResponse,
    WebhookRequest,
    WebhookResponse,
)
from wabot.storage import SessionLocal, init_db, check_db_health, get_db, get_stats, get_recent_analytics
from wabot.transport import GatewayTransport, LoopbackTransport
from wabot.utils import process_uptime, utcnow, verify_hmac_signature


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: create tables, wire transport, generator and pipeline, start
      the daily analytics scheduler
    - Shutdown: stop the scheduler and close the transport
    """
    init_db()

    if settings.GATEWAY_URL:
        transport = GatewayTransport.create(settings.GATEWAY_URL, settings.GATEWAY_TOKEN)
        logger.info(f"Using messaging gateway at {settings.GATEWAY_URL}")
    else:
        transport = LoopbackTransport()
        logger.warning("GATEWAY_URL not set; replies are kept in the loopback outbox")

    generator = create_generator(settings.ANTHROPIC_API_KEY, settings.LLM_MODEL, settings.LLM_MAX_TOKENS)
    pipeline = build_pipeline(settings, transport, generator, SessionLocal)

    scheduler = DailyAnalyticsScheduler(AnalyticsAggregator(SessionLocal))
    if settings.ANALYTICS_SCHEDULE_ENABLED:
        scheduler.start()

    app.state.transport = transport
    app.state.pipeline = pipeline
    app.state.scheduler = scheduler

    try:
        yield
    finally:
        await scheduler.stop()
        await transport.aclose()


app = FastAPI(
    title="WhatsApp AI Bot",
    description="Rate-limited, context-aware chat bot with admin commands and daily analytics",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness check - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness check - returns 200 only if:
    1. DB is reachable and schema is applied
    2. WEBHOOK_SECRET is set (non-empty)

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.WEBHOOK_SECRET:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="WEBHOOK_SECRET not configured"
        )

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Webhook Route
# =============================================================================

def _reject(request: Request, result: str, status_code: int, detail: str, message_id: str = None):
    record_webhook_result(result)
    log_webhook_data(request=request, message_id=message_id, result=result)
    return HTTPException(status_code=status_code, detail=detail)


@app.post(
    "/webhook",
    response_model=WebhookResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        422: {"description": "Validation error"},
        500: {"model": ErrorResponse, "description": "Message could not be handed to the pipeline"},
    }
)
async def webhook(
    request: Request,
    x_signature: Annotated[str | None, Header(alias="X-Signature")] = None,
) -> WebhookResponse:
    """
    Receive one inbound message from the messaging gateway and process it.

    - Validates HMAC-SHA256 signature using X-Signature header
    - Validates request body against WebhookRequest schema
    - Runs the message pipeline and reports its terminal state

    Headers:
        - Content-Type: application/json
        - X-Signature: hex HMAC-SHA256 of raw body using WEBHOOK_SECRET
    """
    raw_body = await request.body()
    logger.debug(f"Webhook body size: {len(raw_body)} bytes")

    if not x_signature or not verify_hmac_signature(raw_body, x_signature, settings.WEBHOOK_SECRET):
        logger.error("Missing or invalid X-Signature header")
        raise _reject(request, "invalid_signature", status.HTTP_401_UNAUTHORIZED, "invalid signature")

    try:
        body_dict = json.loads(raw_body)
        payload = WebhookRequest.model_validate(body_dict)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error(f"Invalid JSON: {e}")
        raise _reject(
            request, "validation_error", status.HTTP_422_UNPROCESSABLE_ENTITY, f"Invalid JSON: {str(e)}"
        )
    except ValidationError as e:
        logger.error(f"Validation error: {e}")
        message_id = body_dict.get("message_id") if isinstance(body_dict, dict) else None
        raise _reject(
            request, "validation_error", status.HTTP_422_UNPROCESSABLE_ENTITY, str(e), message_id
        )

    try:
        result = await request.app.state.transport.deliver(payload.to_inbound())
    except TransportError as e:
        logger.error(f"Could not hand message {payload.message_id} to the pipeline: {e}")
        raise _reject(
            request, "error", status.HTTP_500_INTERNAL_SERVER_ERROR, "message not processed", payload.message_id
        )

    record_webhook_result("accepted")
    log_webhook_data(
        request=request,
        message_id=payload.message_id,
        result="accepted",
        outcome=result.outcome.value,
    )

    return WebhookResponse(status="ok", outcome=result.outcome.value)


# =============================================================================
# Stats & Analytics Routes
# =============================================================================

@app.get("/stats", response_model=StatsResponse)
async def get_statistics(db: Session = Depends(get_db)) -> StatsResponse:
    """Users, messages, today's messages and process uptime."""
    try:
        stats = get_stats(db, utcnow().date())
    except PersistenceError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database error"
        )

    return StatsResponse(
        total_users=stats.total_users,
        total_messages=stats.total_messages,
        today_messages=stats.today_messages,
        uptime_seconds=process_uptime(),
    )


@app.get("/analytics", response_model=list[AnalyticsEntry])
async def list_analytics(
    limit: Annotated[int, Query(ge=1, le=365, description="Number of days to return")] = 30,
    db: Session = Depends(get_db),
) -> list[AnalyticsEntry]:
    """Latest daily analytics rows, newest first."""
    try:
        rows = get_recent_analytics(db, limit=limit)
    except PersistenceError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database error"
        )

    logger.info(f"GET /analytics: returned {len(rows)} rows")
    return [AnalyticsEntry.model_validate(row) for row in rows]


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )

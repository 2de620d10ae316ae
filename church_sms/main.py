import logging
from contextlib import asynccontextmanager
from typing import Annotated, Literal

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from church_sms.config import Settings, get_settings, settings
from church_sms.inbound import process_inbound_sms
from church_sms.logging_utils import RequestLoggingMiddleware, log_webhook_data, setup_logging
from church_sms.metrics import (
    get_metrics,
    get_metrics_content_type,
    record_conversation_match,
    record_webhook_outcome,
)
from church_sms.schemas import (
    ConversationResponse,
    ConversationsListResponse,
    ErrorResponse,
    HealthResponse,
    InboundSms,
    MessageResponse,
    MessagesListResponse,
    StatsResponse,
)
from church_sms.storage import check_db_health, get_conversations, get_db, get_messages, get_stats, init_db
from church_sms.utils import build_twiml


setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

CORS_ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup."""
    init_db()
    yield


app = FastAPI(
    title="Church SMS API",
    description="Inbound SMS webhook with member and conversation resolution",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["POST", "OPTIONS"],
    allow_headers=CORS_ALLOW_HEADERS,
)
# Added last so it wraps CORS and logs preflights too
app.add_middleware(RequestLoggingMiddleware)


def error_response(message: str) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


def describe_validation_error(exc: ValidationError) -> str:
    missing = [str(err["loc"][0]) for err in exc.errors() if err["type"] == "missing"]
    if missing:
        return f"Missing required field(s): {', '.join(missing)}"
    return "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and every table exists.
    Otherwise returns 503 (Service Unavailable).
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Inbound SMS Webhook
# =============================================================================

@app.options("/sms/inbound")
async def sms_inbound_options() -> PlainTextResponse:
    """Bare OPTIONS probes (no CORS preflight headers) still get an ok."""
    return PlainTextResponse(
        "ok",
        headers={
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Headers": ", ".join(CORS_ALLOW_HEADERS),
        },
    )


@app.post(
    "/sms/inbound",
    response_class=Response,
    responses={
        200: {"content": {"text/xml": {}}, "description": "TwiML response"},
        400: {"model": ErrorResponse, "description": "Invalid payload or storage failure"},
    },
)
async def sms_inbound(
    request: Request,
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
) -> Response:
    """
    Receive an inbound SMS from the provider.

    Form fields: From, To, Body, MessageSid (From and Body required).

    The sender is matched to a member, the message is attached to the best existing
    conversation (or a new one), and the message is stored. Responds with TwiML.
    """
    form = await request.form()
    payload = {key: value for key, value in form.items() if isinstance(value, str)}
    logger.info(f"Inbound SMS received: sid={payload.get('MessageSid')}")

    try:
        sms = InboundSms.model_validate(payload)
    except ValidationError as e:
        message = describe_validation_error(e)
        logger.error(f"Invalid inbound SMS payload: {message}")
        record_webhook_outcome("validation_error")
        log_webhook_data(request, message_sid=payload.get("MessageSid"), result="validation_error")
        return error_response(message)

    try:
        # Blocking DB work runs off the event loop
        result = await run_in_threadpool(process_inbound_sms, db, sms, config)
    except Exception as e:
        logger.error(f"SMS receiving error: {e}")
        record_webhook_outcome("error")
        log_webhook_data(request, message_sid=sms.message_sid, result="error")
        return error_response(str(e))

    outcome = "duplicate" if result.duplicate else "recorded"
    record_webhook_outcome(outcome)
    if not result.duplicate:
        record_conversation_match(result.match_source)
    log_webhook_data(
        request,
        message_sid=sms.message_sid,
        result=outcome,
        match_source=result.match_source,
        conversation_id=result.conversation_id,
        dup=result.duplicate,
    )

    return Response(content=build_twiml(config.SMS_AUTO_REPLY), media_type="text/xml")


# =============================================================================
# Messages Route
# =============================================================================

@app.get("/messages", response_model=MessagesListResponse)
async def list_messages(
    limit: Annotated[int, Query(ge=1, le=100, description="Maximum number of messages to return")] = 50,
    offset: Annotated[int, Query(ge=0, description="Number of messages to skip")] = 0,
    conversation_id: Annotated[int | None, Query(description="Filter by conversation")] = None,
    member_id: Annotated[int | None, Query(description="Filter by member")] = None,
    direction: Annotated[Literal["inbound", "outbound"] | None, Query()] = None,
    from_param: Annotated[str | None, Query(alias="from", description="Filter by sender (exact match)")] = None,
    db: Session = Depends(get_db),
) -> MessagesListResponse:
    """
    List stored messages ordered by arrival (created_at ASC, id ASC).

    total is the number of messages matching the filters, ignoring limit/offset.
    """
    messages, total = get_messages(
        db=db,
        limit=limit,
        offset=offset,
        conversation_id=conversation_id,
        member_id=member_id,
        direction=direction,
        from_number=from_param,
    )

    return MessagesListResponse(
        data=[MessageResponse.model_validate(msg) for msg in messages],
        total=total,
        limit=limit,
        offset=offset,
    )


# =============================================================================
# Conversations Route
# =============================================================================

@app.get("/conversations", response_model=ConversationsListResponse)
async def list_conversations(
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
    status_param: Annotated[str | None, Query(alias="status", description="Filter by status")] = None,
    db: Session = Depends(get_db),
) -> ConversationsListResponse:
    """List conversations, most recently updated first."""
    conversations, total = get_conversations(db=db, limit=limit, offset=offset, status=status_param)

    return ConversationsListResponse(
        data=[ConversationResponse.model_validate(c) for c in conversations],
        total=total,
        limit=limit,
        offset=offset,
    )


# =============================================================================
# Stats Route
# =============================================================================

@app.get("/stats", response_model=StatsResponse)
async def get_statistics(db: Session = Depends(get_db)) -> StatsResponse:
    """Message and conversation counts."""
    stats = get_stats(db)
    logger.info(f"GET /stats: returned stats for {stats['total_messages']} messages")
    return StatsResponse(**stats)


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

import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, Response, status
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from sms_inbox import __version__
from sms_inbox.config import Settings, get_settings
from sms_inbox.ingestion import ingest_message
from sms_inbox.logging_utils import setup_logging, RequestLoggingMiddleware, log_webhook_data
from sms_inbox.metrics import record_webhook_outcome, track_messages_stored, get_metrics, get_metrics_content_type
from sms_inbox.schemas import (
    ClearResponse,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    PhoneNumberResponse,
    TwilioWebhookRequest,
)
from sms_inbox.storage import MemStorage, MessageStore, StoreFailure
from sms_inbox.utils import verify_twilio_signature


logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Dependencies
# =============================================================================

def get_store(request: Request) -> MessageStore:
    """The store instance created with the application."""
    return request.app.state.store


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


async def read_webhook_params(request: Request) -> dict:
    """
    Decode the webhook body into a flat mapping.

    Twilio posts application/x-www-form-urlencoded; JSON bodies are accepted
    too so the endpoint can be driven by other tools.

    Raises:
        ValueError: if the body is not valid JSON or not a JSON object
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        raw_body = await request.body()
        params = json.loads(raw_body)
        if not isinstance(params, dict):
            raise ValueError("JSON body must be an object")
        return params

    form = await request.form()
    return dict(form)


# =============================================================================
# Health Check Routes
# =============================================================================

@router.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@router.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response, store: MessageStore = Depends(get_store)) -> HealthResponse:
    """
    Readiness probe - returns 200 if the message store answers,
    503 (Service Unavailable) otherwise.
    """
    try:
        store.count()
    except StoreFailure as e:
        logger.error(f"Message store health check failed: {e}")
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="Message store not responding")

    return HealthResponse(status="ready")


# =============================================================================
# Webhook Route
# =============================================================================

@router.post(
    "/api/webhooks/sms",
    response_class=PlainTextResponse,
    responses={
        200: {"description": "Stored, or already stored (duplicate delivery)"},
        400: {"model": ErrorResponse, "description": "Invalid webhook data"},
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        500: {"model": ErrorResponse, "description": "Message could not be stored"},
    }
)
async def receive_sms(
    request: Request,
    x_twilio_signature: Annotated[str | None, Header(alias="X-Twilio-Signature")] = None,
    store: MessageStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> PlainTextResponse:
    """
    Ingest an inbound SMS from Twilio at most once per MessageSid.

    - Decodes the form (or JSON) body
    - Verifies X-Twilio-Signature when TWILIO_AUTH_TOKEN is configured
    - Validates the payload against TwilioWebhookRequest
    - Duplicate MessageSid returns 200 without inserting

    Both new and duplicate deliveries are acknowledged with "OK".
    """
    logger.info("Webhook request received")

    try:
        params = await read_webhook_params(request)
    except ValueError as e:
        logger.warning(f"Undecodable webhook body: {e}")
        record_webhook_outcome("validation_error")
        log_webhook_data(request=request, result="validation_error")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook data"
        )

    message_sid = params.get("MessageSid")
    if not isinstance(message_sid, str):
        message_sid = None

    if settings.TWILIO_AUTH_TOKEN:
        url = settings.TWILIO_WEBHOOK_URL or str(request.url)
        if not verify_twilio_signature(url, params, x_twilio_signature or "", settings.TWILIO_AUTH_TOKEN):
            logger.error("Missing or invalid X-Twilio-Signature")
            record_webhook_outcome("invalid_signature")
            log_webhook_data(request=request, message_sid=message_sid, result="invalid_signature")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="invalid signature"
            )

    try:
        payload = TwilioWebhookRequest.model_validate(params)
    except ValidationError as e:
        logger.warning(f"Webhook validation error: {e.error_count()} errors, fields={[err['loc'] for err in e.errors()]}")
        record_webhook_outcome("validation_error")
        log_webhook_data(request=request, message_sid=message_sid, result="validation_error")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook data"
        )

    try:
        result = ingest_message(store, payload)
    except StoreFailure:
        logger.exception(f"Failed to store message: {payload.message_sid}")
        record_webhook_outcome("error")
        log_webhook_data(request=request, message_sid=payload.message_sid, result="error")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store message"
        )

    outcome = "duplicate" if result.duplicate else "created"
    record_webhook_outcome(outcome)
    log_webhook_data(
        request=request,
        message_sid=payload.message_sid,
        dup=result.duplicate,
        result=outcome
    )

    return PlainTextResponse("OK")


# =============================================================================
# Messages Routes
# =============================================================================

@router.get(
    "/api/messages",
    response_model=list[MessageResponse],
    responses={500: {"model": ErrorResponse}},
)
async def list_messages(store: MessageStore = Depends(get_store)) -> list[MessageResponse]:
    """All stored messages, most recently received first."""
    try:
        messages = store.list_all()
    except StoreFailure:
        logger.exception("Failed to fetch messages")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch messages"
        )

    logger.debug(f"GET /api/messages: returned {len(messages)} messages")
    return [MessageResponse.from_message(message) for message in messages]


@router.delete(
    "/api/messages",
    response_model=ClearResponse,
    responses={500: {"model": ErrorResponse}},
)
async def clear_messages(store: MessageStore = Depends(get_store)) -> ClearResponse:
    """Remove every stored message. Clearing an empty inbox succeeds."""
    try:
        store.clear_all()
    except StoreFailure:
        logger.exception("Failed to clear messages")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to clear messages"
        )

    return ClearResponse(message="Messages cleared successfully")


# =============================================================================
# Phone Number Route
# =============================================================================

@router.get(
    "/api/phone-number",
    response_model=PhoneNumberResponse,
    responses={500: {"model": ErrorResponse}},
)
async def phone_number(settings: Settings = Depends(get_app_settings)) -> PhoneNumberResponse:
    """The number users text to reach the inbox, from TWILIO_PHONE_NUMBER."""
    if not settings.TWILIO_PHONE_NUMBER:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Phone number not configured. Please set TWILIO_PHONE_NUMBER environment variable."
        )
    return PhoneNumberResponse(phone_number=settings.TWILIO_PHONE_NUMBER)


# =============================================================================
# Metrics Route
# =============================================================================

@router.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in text exposition format."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


# =============================================================================
# Application Factory
# =============================================================================

def create_app(settings: Optional[Settings] = None, store: Optional[MessageStore] = None) -> FastAPI:
    """
    Build the application around a single message store.

    Args:
        settings: Settings to use; read from the environment when omitted
        store: Message store shared by every request; a fresh MemStorage when omitted
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "SMS inbox starting",
            extra={
                "phone_number": settings.TWILIO_PHONE_NUMBER,
                "signature_check": bool(settings.TWILIO_AUTH_TOKEN),
            }
        )
        yield
        # Messages live only in memory and are dropped with the process
        logger.info("SMS inbox stopping, stored messages are discarded")

    app = FastAPI(
        title="SMS Inbox",
        description="Receives SMS via Twilio webhooks and keeps them in memory for a polling client",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store if store is not None else MemStorage()
    track_messages_stored(app.state.store.count)

    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(router)

    return app


app = create_app()

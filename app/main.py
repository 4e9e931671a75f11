import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response, Request, Depends, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import CRMError, NotFoundError, ValidationError, require_fields
from app.storage import (
    open_store,
    init_db,
    check_db_health,
    get_db,
    get_or_create_user,
    list_users,
    list_deals,
    create_deal,
    update_deal,
    delete_deal,
    list_messages,
    create_message,
)
from app.logging_utils import setup_logging, RequestLoggingMiddleware, log_entity_data
from app.metrics import record_crm_operation, get_metrics, get_metrics_content_type
from app.schemas import (
    LoginRequest,
    DealCreateRequest,
    DealUpdate,
    MessageCreateRequest,
    UserResponse,
    DealResponse,
    MessageResponse,
    LoginResponse,
    UsersListResponse,
    DealEnvelope,
    DealsListResponse,
    DealDeletedResponse,
    MessageEnvelope,
    MessagesListResponse,
    RootResponse,
    ErrorResponse,
    HealthResponse,
)


setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing or malformed input"},
    500: {"model": ErrorResponse, "description": "Storage error"},
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup opens the store (fatal on failure), then applies the schema and
    seeds demo users.
    """
    open_store()
    init_db()
    yield


app = FastAPI(
    title="CRM Chat API",
    description="Users, deals and per-deal chat messages over SQLite",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Error Handlers
# =============================================================================

@app.exception_handler(CRMError)
async def crm_error_handler(request: Request, exc: CRMError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and path parameters are client errors, reported as 400."""
    details = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        details.append(f"{location}: {error.get('msg')}")
    message = "; ".join(details) or "Invalid request"
    logger.warning(f"Request validation failed: {message}")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


def _outcome(exc: CRMError) -> str:
    if isinstance(exc, ValidationError):
        return "invalid"
    if isinstance(exc, NotFoundError):
        return "not_found"
    return "error"


def _record_failure(request: Request, entity: str, exc: CRMError, entity_id=None) -> None:
    result = _outcome(exc)
    record_crm_operation(entity, result)
    log_entity_data(request, entity=entity, entity_id=entity_id, result=result)


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/", response_model=RootResponse)
async def root() -> RootResponse:
    return RootResponse(message="CRM Chat API is running")


@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and the users,
    deals and messages tables exist. Otherwise returns 503.
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )
    return HealthResponse(status="ready")


# =============================================================================
# User Routes
# =============================================================================

@app.post("/api/login", response_model=LoginResponse, responses=ERROR_RESPONSES)
async def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db)
) -> LoginResponse:
    """
    Return the user with this phone, creating it on first sight.
    There is no separate signup step.
    """
    try:
        require_fields(payload, "phone")
        user, created = get_or_create_user(db, payload.phone)
    except CRMError as e:
        _record_failure(request, "user", e, entity_id=payload.phone)
        raise

    result = "created" if created else "found"
    record_crm_operation("user", result)
    log_entity_data(request, entity="user", entity_id=user.phone, result=result)
    return LoginResponse(user=UserResponse.model_validate(user))


@app.get("/api/users", response_model=UsersListResponse, responses=ERROR_RESPONSES)
async def get_users(db: Session = Depends(get_db)) -> UsersListResponse:
    users = list_users(db)
    logger.debug(f"GET /api/users: {len(users)} users")
    return UsersListResponse(users=[UserResponse.model_validate(u) for u in users])


# =============================================================================
# Deal Routes
# =============================================================================

@app.get("/api/deals", response_model=DealsListResponse, responses=ERROR_RESPONSES)
async def get_deals(db: Session = Depends(get_db)) -> DealsListResponse:
    """All deals, newest first."""
    deals = list_deals(db)
    logger.debug(f"GET /api/deals: {len(deals)} deals")
    return DealsListResponse(deals=[DealResponse.model_validate(d) for d in deals])


@app.post("/api/deals", response_model=DealEnvelope, responses=ERROR_RESPONSES)
async def post_deal(
    payload: DealCreateRequest,
    request: Request,
    db: Session = Depends(get_db)
) -> DealEnvelope:
    """
    Create a deal at stage 0.

    name, amount and created_by are required; zero or empty values count as
    missing. currency defaults to "$".
    """
    try:
        require_fields(payload, "name", "amount", "created_by")
        deal = create_deal(
            db=db,
            name=payload.name,
            amount=payload.amount,
            created_by=payload.created_by,
            currency=payload.currency,
        )
    except CRMError as e:
        _record_failure(request, "deal", e)
        raise

    record_crm_operation("deal", "created")
    log_entity_data(request, entity="deal", entity_id=deal.id, result="created")
    return DealEnvelope(deal=DealResponse.model_validate(deal))


@app.put(
    "/api/deals/{deal_id}",
    response_model=DealEnvelope,
    responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse, "description": "Deal not found"}},
)
async def put_deal(
    deal_id: int,
    patch: DealUpdate,
    request: Request,
    db: Session = Depends(get_db)
) -> DealEnvelope:
    """
    Partially update a deal. Only fields present in the body are written;
    an empty body is rejected with 400.
    """
    try:
        deal = update_deal(db, deal_id, patch.changes())
    except CRMError as e:
        _record_failure(request, "deal", e, entity_id=deal_id)
        raise

    record_crm_operation("deal", "updated")
    log_entity_data(request, entity="deal", entity_id=deal_id, result="updated")
    return DealEnvelope(deal=DealResponse.model_validate(deal))


@app.delete(
    "/api/deals/{deal_id}",
    response_model=DealDeletedResponse,
    responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse, "description": "Deal not found"}},
)
async def remove_deal(
    deal_id: int,
    request: Request,
    db: Session = Depends(get_db)
) -> DealDeletedResponse:
    """Delete a deal together with its messages."""
    try:
        delete_deal(db, deal_id)
    except CRMError as e:
        _record_failure(request, "deal", e, entity_id=deal_id)
        raise

    record_crm_operation("deal", "deleted")
    log_entity_data(request, entity="deal", entity_id=deal_id, result="deleted")
    return DealDeletedResponse(id=deal_id)


# =============================================================================
# Message Routes
# =============================================================================

@app.get("/api/messages/{deal_id}", response_model=MessagesListResponse, responses=ERROR_RESPONSES)
async def get_deal_messages(
    deal_id: int,
    db: Session = Depends(get_db)
) -> MessagesListResponse:
    """
    Chat history of a deal, oldest first. An unknown deal yields an empty
    list rather than 404.
    """
    messages = list_messages(db, deal_id)
    logger.debug(f"GET /api/messages/{deal_id}: {len(messages)} messages")
    return MessagesListResponse(messages=[MessageResponse.model_validate(m) for m in messages])


@app.post("/api/messages", response_model=MessageEnvelope, responses=ERROR_RESPONSES)
async def post_message(
    payload: MessageCreateRequest,
    request: Request,
    db: Session = Depends(get_db)
) -> MessageEnvelope:
    """
    Append a message to a deal. deal_id, sender and text are required.
    Unknown deals or senders fail the storage foreign key check (500).
    """
    try:
        require_fields(payload, "deal_id", "sender", "text")
        message = create_message(
            db=db,
            deal_id=payload.deal_id,
            sender=payload.sender,
            text=payload.text,
        )
    except CRMError as e:
        _record_failure(request, "message", e)
        raise

    record_crm_operation("message", "created")
    log_entity_data(request, entity="message", entity_id=message.id, result="created")
    return MessageEnvelope(message=MessageResponse.model_validate(message))


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics:
    - http_requests_total: Total HTTP requests by method, path, status
    - crm_operations_total: Write outcomes by entity and result
    - request_latency_seconds: Request latency histogram
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Annotated, Generator, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Path, Query, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from groupbook import storage
from groupbook.auth import OPERATIONS, require_token, resource_for
from groupbook.config import Settings, get_settings
from groupbook.logging_utils import setup_logging, RequestLoggingMiddleware, log_request_data
from groupbook.metrics import record_operation, get_metrics, get_metrics_content_type
from groupbook.schemas import (
    INT_MAX,
    INT_MIN,
    DeleteResponse,
    ErrorResponse,
    HealthResponse,
    MessageCreate,
    MessageResponse,
    TransactionCreate,
    TransactionResponse,
)
from groupbook.storage import Store


logger = logging.getLogger(__name__)


# =============================================================================
# Dependencies
# =============================================================================

def get_store(request: Request) -> Store:
    return request.app.state.store


def get_db(store: Store = Depends(get_store)) -> Generator[Session, None, None]:
    yield from store.session()


def page_limit(request: Request, limit: int) -> int:
    """Clamp a caller-supplied limit to MAX_LIST_LIMIT."""
    return min(limit, request.app.state.settings.MAX_LIST_LIMIT)


health_router = APIRouter()
api_router = APIRouter(
    prefix="/api",
    dependencies=[Depends(require_token)],
    responses={
        400: {"description": "Missing or invalid fields"},
        401: {"model": ErrorResponse, "description": "Missing or invalid token"},
        500: {"model": ErrorResponse, "description": "Store failure"},
    },
)


# =============================================================================
# Health Check Routes
# =============================================================================

@health_router.get("/health", response_model=HealthResponse, response_model_exclude_none=True)
async def health() -> HealthResponse:
    return HealthResponse(status="ok", timestamp=datetime.now(timezone.utc))


@health_router.get("/health/live", response_model=HealthResponse, response_model_exclude_none=True)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    Used by orchestrators to determine if the app needs to be restarted.
    """
    return HealthResponse(status="ok")


@health_router.get("/health/ready", response_model=HealthResponse, response_model_exclude_none=True)
def health_ready(response: Response, store: Store = Depends(get_store)) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the database is reachable and both
    tables exist, otherwise 503.

    When startup ran degraded, each call retries schema initialization first.
    """
    if not store.schema_ready and not store.ensure_schema():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="Database not reachable")

    if not store.check_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


@health_router.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in text exposition format."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


# =============================================================================
# Transactions Routes
# =============================================================================

@api_router.get("/transactions", response_model=list[TransactionResponse])
def get_transactions(
    request: Request,
    group_name: Annotated[Optional[str], Query(description="Only this group")] = None,
    limit: Annotated[int, Query(ge=1, le=INT_MAX, description="Maximum number of rows")] = 100,
    offset: Annotated[int, Query(ge=0, le=INT_MAX, description="Number of rows to skip")] = 0,
    db: Session = Depends(get_db)
):
    """List transactions, newest first."""
    rows = storage.list_transactions(
        db,
        group_name=group_name,
        limit=page_limit(request, limit),
        offset=offset
    )
    record_operation("transactions", "list", "listed")
    log_request_data(request, resource="transactions", result="listed", group_name=group_name)
    return rows


@api_router.post(
    "/transactions",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
def post_transaction(
    request: Request,
    body: TransactionCreate,
    db: Session = Depends(get_db)
):
    """Record a transaction. Retrying the same body creates another row."""
    row = storage.create_transaction(
        db,
        item_id=body.item_id,
        item=body.item,
        user=body.user,
        amount=body.amount,
        group_name=body.group_name
    )
    record_operation("transactions", "create", "created")
    log_request_data(
        request,
        resource="transactions",
        result="created",
        record_id=row["id"],
        group_name=body.group_name
    )
    return row


# =============================================================================
# Messages Routes
# =============================================================================

@api_router.get("/messages", response_model=list[MessageResponse])
def get_messages(
    request: Request,
    group_name: Annotated[Optional[str], Query(description="Only this group")] = None,
    limit: Annotated[int, Query(ge=1, le=INT_MAX, description="Maximum number of rows")] = 50,
    offset: Annotated[int, Query(ge=0, le=INT_MAX, description="Number of rows to skip")] = 0,
    db: Session = Depends(get_db)
):
    """List messages, newest first."""
    rows = storage.list_messages(
        db,
        group_name=group_name,
        limit=page_limit(request, limit),
        offset=offset
    )
    record_operation("messages", "list", "listed")
    log_request_data(request, resource="messages", result="listed", group_name=group_name)
    return rows


@api_router.post(
    "/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
def post_message(
    request: Request,
    body: MessageCreate,
    db: Session = Depends(get_db)
):
    row = storage.create_message(
        db,
        message=body.message,
        sender=body.sender,
        group_name=body.group_name,
        item_id=body.item_id,
        amount=body.amount
    )
    record_operation("messages", "create", "created")
    log_request_data(
        request,
        resource="messages",
        result="created",
        record_id=row["id"],
        group_name=body.group_name
    )
    return row


@api_router.delete(
    "/messages/{message_id}",
    response_model=DeleteResponse,
    responses={404: {"model": ErrorResponse, "description": "No matching message"}},
)
def delete_message(
    request: Request,
    message_id: Annotated[int, Path(ge=INT_MIN, le=INT_MAX)],
    group_name: Annotated[Optional[str], Query(description="Only delete within this group")] = None,
    db: Session = Depends(get_db)
):
    """
    Delete a message by id. With group_name, a message from another group
    is treated as not found.
    """
    deleted = storage.delete_message(db, message_id, group_name=group_name)
    result = "deleted" if deleted else "not_found"
    record_operation("messages", "delete", result)
    log_request_data(
        request,
        resource="messages",
        result=result,
        record_id=message_id,
        group_name=group_name
    )

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Message not found"
        )
    return DeleteResponse()


# =============================================================================
# Exception Handlers
# =============================================================================

async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Bad body, query or path input is a 400, not FastAPI's default 422."""
    errors = jsonable_encoder(exc.errors())
    missing = any(error.get("type") == "missing" for error in errors)
    log_request_data(request, result="validation_error")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": "Missing required fields" if missing else "Invalid request",
            "errors": errors,
        }
    )


async def store_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Log the database failure server-side and hide it from the caller."""
    logger.error(f"Store error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    record_operation(
        resource=resource_for(request.url.path),
        operation=OPERATIONS.get(request.method, request.method.lower()),
        result="error"
    )
    log_request_data(request, result="error")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"}
    )


# =============================================================================
# Application
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: probe the database and create the schema.
    Shutdown (SIGTERM/SIGINT via uvicorn): drain the connection pool.
    """
    store: Store = app.state.store
    store.start()
    try:
        yield
    finally:
        store.close()


def create_app(settings: Optional[Settings] = None, store: Optional[Store] = None) -> FastAPI:
    """
    Build the application with its own Store.

    Nothing touches the database until the lifespan starts.
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title="groupbook",
        description="Group messages and transactions over a shared-secret API",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store if store is not None else Store(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, store_exception_handler)

    app.include_router(health_router, tags=["health"])
    app.include_router(api_router, tags=["api"])
    return app


def run() -> None:
    """Serve on 0.0.0.0:PORT until SIGTERM/SIGINT."""
    settings = get_settings()
    app = create_app(settings)
    logger.info(f"groupbook starting on port {settings.PORT} ({settings.ENVIRONMENT})")
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT, log_config=None)

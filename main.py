import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from contact_store import ContactStore, SqliteContactStore
from db_models import ErrorResponse, FinalResponse, IdentifyRequest
from exceptions import ConsistencyError, InvalidRequest, StoreUnavailable
from identity_resolver import IdentityResolver
from logging_config import set_request_id, setup_logging
from settings import settings

logger = logging.getLogger(__name__)


def _error(status_code: int, error: str, message: str, field: Optional[str] = None):
    body = ErrorResponse(error=error, message=message, field=field)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def get_resolver(request: Request) -> IdentityResolver:
    return request.app.state.resolver


def create_app(store: Optional[ContactStore] = None) -> FastAPI:
    """Build the API around ``store`` (SQLite at settings.database_path by default)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.resolver is None:
            app.state.resolver = IdentityResolver(SqliteContactStore(settings.database_path))
        logger.info("Contact store ready", extra={"store": type(app.state.resolver.store).__name__})
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
    )
    app.state.resolver = IdentityResolver(store) if store is not None else None

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        set_request_id(request_id)
        logger.info("Incoming request", extra={"method": request.method, "path": request.url.path})
        try:
            response = await call_next(request)
        finally:
            set_request_id(None)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(InvalidRequest)
    async def invalid_request_handler(request: Request, exc: InvalidRequest):
        logger.info("Rejected request", extra={"field": exc.field, "reason": exc.message})
        return _error(400, "Validation Error", exc.message, exc.field)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        loc = errors[0].get("loc", ()) if errors else ()
        field = loc[-1] if len(loc) > 1 and isinstance(loc[-1], str) else None
        message = errors[0].get("msg", "Invalid request body") if errors else "Invalid request body"
        return _error(400, "Validation Error", message, field)

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
        logger.error("Contact store unavailable", exc_info=exc)
        return _error(503, "Service Unavailable", "The contact store is unavailable")

    @app.exception_handler(ConsistencyError)
    async def consistency_error_handler(request: Request, exc: ConsistencyError):
        logger.error("Contact data integrity violation", exc_info=exc)
        return _error(500, "Internal Server Error", "An unexpected error occurred")

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error occurred", exc_info=exc)
        return _error(500, "Internal Server Error", "An unexpected error occurred")

    @app.get("/")
    async def root():
        return {"message": "Bitespeed API is up"}

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": settings.version,
        }

    # Plain def: the store blocks, so FastAPI runs this in its threadpool
    @app.post("/identify", response_model=FinalResponse, responses={400: {"model": ErrorResponse}})
    def identify(request: IdentifyRequest, resolver: IdentityResolver = Depends(get_resolver)):
        identity = resolver.identify(request.email, request.phoneNumber)
        return FinalResponse(contact=identity)

    return app


setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)

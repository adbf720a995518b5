from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from account_lifecycle.api.v1 import api_router
from account_lifecycle.core.config import settings
from account_lifecycle.core.errors import AccountLifecycleError, ErrorKind
from account_lifecycle.core.logging_config import configure_logging
from account_lifecycle.core.redis_client import close_redis
from account_lifecycle.core.sentry import init_sentry
from account_lifecycle.core.startup_checks import validate_production_settings
from account_lifecycle.middleware import AuditMiddleware, RequestLoggingMiddleware, SecurityHeadersMiddleware
from account_lifecycle.schemas.error import ErrorResponse
from account_lifecycle.services import account_deletion_scheduler, leader_lock


@asynccontextmanager
async def lifespan(app: FastAPI):
    validate_production_settings()
    account_deletion_scheduler.start(app)
    try:
        yield
    finally:
        await account_deletion_scheduler.stop(app)
        await leader_lock.dispose()
        await close_redis()


def get_application() -> FastAPI:
    configure_logging(settings.log_json)
    init_sentry()
    tags_metadata = [
        {"name": "account", "description": "Account deletion, restoration and linked logins"},
        {"name": "jobs", "description": "Endpoints for the external scheduler"},
    ]
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_tags=tags_metadata,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(AuditMiddleware)
    app.include_router(api_router, prefix="/api/v1")

    @app.exception_handler(AccountLifecycleError)
    async def account_lifecycle_exception_handler(request: Request, exc: AccountLifecycleError):
        payload = ErrorResponse(detail=exc.message, code=exc.kind.value)
        headers = {"WWW-Authenticate": "Bearer"} if exc.kind == ErrorKind.unauthorized else None
        return JSONResponse(status_code=exc.status_code, content=payload.model_dump(), headers=headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        payload = ErrorResponse(detail=exc.detail, code=None)
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder(payload.model_dump()),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        payload = ErrorResponse(detail=errors, code=ErrorKind.validation_error.value)
        return JSONResponse(status_code=422, content=payload.model_dump())

    return app


app = get_application()

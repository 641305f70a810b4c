import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1 import api_router
from app.core.automation.dispatcher import MutationDispatcher
from app.core.automation.errors import (
    AutomationError,
    ChainCancelledError,
    ConfigurationError,
    TransientStoreError,
)
from app.core.automation.trigger_handler import TriggerHandler
from app.core.config_file import get_settings
from app.core.exceptions import APIException
from app.core.logging import app_logger

settings = get_settings()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Own the mutation dispatcher; run the records stream consumer on it when enabled.

    Mutations posted to the API and mutations read from the stream share the
    dispatcher, so each table keeps a single queue.
    """
    dispatcher = MutationDispatcher()
    dispatcher.start()
    app.state.dispatcher = dispatcher
    trigger_handler = None
    if settings.AUTOMATION_STREAM_CONSUMER:
        trigger_handler = TriggerHandler(dispatcher)
        await trigger_handler.start()
    app_logger.info(f"Automation API started (env={settings.ENV})")
    try:
        yield
    finally:
        if trigger_handler is not None:
            await trigger_handler.stop()
        else:
            await dispatcher.stop()


app = FastAPI(
    title="Workspace Automation API",
    version="0.1.0",
    description="Record trigger/action automations for workspace tables",
    docs_url="/docs",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# CORS configuration
if settings.CORS_ORIGINS:
    origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",")]
else:
    origins = ["http://localhost:5173", "http://localhost:3000"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(APIException)
async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    """Handle APIException and return standard error format."""
    response_content = exc.detail.copy()
    response_content["data"] = None
    return JSONResponse(
        status_code=exc.status_code,
        content=response_content,
    )


@app.exception_handler(AutomationError)
async def automation_exception_handler(request: Request, exc: AutomationError) -> JSONResponse:
    """Map engine errors onto the standard error format.

    Misconfigured definitions are the caller's fault (400); an unreachable
    record store (503) or an expired chain (504) are not.
    """
    if isinstance(exc, ConfigurationError):
        status_code = status.HTTP_400_BAD_REQUEST
        code = "AUTOMATION_CONFIGURATION_ERROR"
        details = {"reason": exc.code, **exc.details}
    elif isinstance(exc, TransientStoreError):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        code = "RECORD_STORE_UNAVAILABLE"
        details = exc.details
    elif isinstance(exc, ChainCancelledError):
        status_code = status.HTTP_504_GATEWAY_TIMEOUT
        code = exc.code
        details = exc.details
    else:
        logger.error(f"Unhandled automation error on {request.url.path}: {exc}")
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        code = exc.code
        details = exc.details

    return JSONResponse(
        status_code=status_code,
        content={
            "error": {"code": code, "message": exc.message, "details": details},
            "data": None,
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors and format them according to API contract."""
    details: dict[str, list[str]] = {}
    for error in exc.errors():
        field_path = error["loc"]
        # Drop the "body"/"query"/"path" prefix
        field_name = str(field_path[-1]) if len(field_path) > 1 else str(field_path[0])
        details.setdefault(field_name, []).append(error["msg"])

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Validation failed",
                "details": details,
            },
            "data": None,
        },
    )


@app.get("/healthz", tags=["system"])
def healthz():
    """Health check endpoint."""
    return {
        "status": "ok",
        "env": settings.ENV,
        "debug": settings.DEBUG,
    }


# Include API routers
app.include_router(api_router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )

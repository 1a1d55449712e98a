import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
# Import CORSMiddleware
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# OpenTelemetry Imports (Basic Setup)
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.accounts import router as accounts_router
from app.core.config import settings
from app.core.exceptions import APIException, ProviderError
from app.core.rate_limit import limiter
from app.logging_config import setup_logging
from app.mpesa import router as mpesa_router
from app.validators import ValidatorRegistry, describe_validation_error

# Call setup_logging early, before creating app or loggers
setup_logging()
logger = logging.getLogger(__name__)


def setup_opentelemetry(app: FastAPI):
    # Check if tracing is enabled using the dedicated flag from settings
    if settings.OPENTELEMETRY_ENABLED:
        logger.info("Setting up OpenTelemetry")
        resource = Resource(attributes={SERVICE_NAME: "PayvexAccountsService"})

        provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(provider)

        # Configure exporter based on endpoint setting
        if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
            endpoint = settings.OTEL_EXPORTER_OTLP_ENDPOINT
            logger.info(f"Configuring OTLP Exporter to: {endpoint}/v1/traces")
            try:
                exporter = OTLPSpanExporter(endpoint=f"{endpoint.strip('/')}/v1/traces")
                provider.add_span_processor(BatchSpanProcessor(exporter))
            except Exception as e:
                logger.error(f"Failed to initialize OTLP Exporter: {e}. Falling back to Console Exporter.")
                provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        else:
            logger.warning("OTEL_EXPORTER_OTLP_ENDPOINT not set. Defaulting to ConsoleSpanExporter.")
            provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

        FastAPIInstrumentor.instrument_app(app)
        logger.info("OpenTelemetry setup complete.")
    else:
        logger.info("OpenTelemetry tracing is disabled via OPENTELEMETRY_ENABLED setting.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_opentelemetry(app)
    # One pooled client for every outbound provider call
    app.state.http_client = httpx.AsyncClient()
    app.state.validators = ValidatorRegistry(
        settings.provider_config(), app.state.http_client
    )
    logger.info("Application startup complete.")
    yield
    await app.state.http_client.aclose()
    logger.info("Application shutdown.")


def error_response(status_code: int, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message},
        headers=headers,
    )


async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    if isinstance(exc, ProviderError):
        # Diagnostics stay in the logs
        logger.info(
            f"{request.url.path} failed with {exc.kind.value}: {exc.message}",
            extra={"props": {"diagnostic": exc.diagnostic}},
        )
    return error_response(exc.status_code, exc.message)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return error_response(400, describe_validation_error(exc))


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return error_response(exc.status_code, str(exc.detail), getattr(exc, "headers", None))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=exc)
    return error_response(500, "An unexpected error occurred. Please try again.")


app = FastAPI(title="Payvex Accounts", lifespan=lifespan)

# --- Add Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOWED_ORIGINS,
    allow_credentials="*" not in settings.CORS_ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add Rate Limiter State and Middleware
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# --- Error envelope: {"success": false, "message": ...} ---
app.add_exception_handler(APIException, api_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# --- Mount Routers ---
app.include_router(accounts_router)
app.include_router(mpesa_router)


@app.get("/health")
async def health_check():
    logger.debug("Health check endpoint called")
    return {"status": "ok"}


if __name__ == "__main__":
    # uvicorn is used directly in deployment
    import uvicorn

    logger.info("Starting Uvicorn directly for local testing")
    uvicorn.run(app, host="0.0.0.0", port=8000)

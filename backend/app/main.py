import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.v1.service_requests import router as service_requests_router
from app.core.config import get_settings
from app.core.dependencies import create_schema
from app.services.errors import ServiceRequestError

settings = get_settings()

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Service Requests API",
    version="1.0.0",
    docs_url="/docs" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.openapi_enabled else None,
)


@app.on_event("startup")
async def _startup_schema():
    if settings.auto_create_schema:
        logger.info("AUTO_CREATE_SCHEMA set; creating tables from model metadata")
        create_schema()


if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

app.include_router(service_requests_router, prefix="/api/v1", tags=["service-requests"])


@app.exception_handler(ServiceRequestError)
async def _service_request_error_handler(request: Request, exc: ServiceRequestError):
    if exc.http_status >= 500:
        logger.warning("Service request operation failed kind=%s path=%s", exc.kind, request.url.path)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Hide internal details for 5xx in production unless explicitly enabled.
    if exc.status_code >= 500 and not settings.expose_error_details:
        return JSONResponse(status_code=exc.status_code, content={"detail": "Internal server error"})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception")
    if settings.expose_error_details:
        return JSONResponse(status_code=500, content={"detail": str(exc)})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/health")
async def health():
    return {"status": "ok"}

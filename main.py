from http import HTTPStatus

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.requests import Request
from merchant_pipeline.api.submission_routes import router as submission_router
from merchant_pipeline.api.application_routes import router as application_router
from merchant_pipeline.api.invite_routes import router as invite_router
from merchant_pipeline.api.mirror_routes import router as mirror_router
from merchant_pipeline.api.upload_request_routes import router as upload_request_router
from merchant_pipeline.api.download_routes import router as download_router
from merchant_pipeline.api.audit_routes import router as audit_router
from merchant_pipeline.api.auth_routes import router as auth_router
from contextlib import asynccontextmanager
from merchant_pipeline.database.connection import init_db
from merchant_pipeline.core.config import settings
from merchant_pipeline.core.service_container import build_services
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
import logging
import traceback


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds security headers to every API response.

    OPTIONS requests are left untouched so CORSMiddleware can answer
    preflights with its own headers.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        if request.method != "OPTIONS":
            response.headers["X-Content-Type-Options"] = "nosniff"
            response.headers["X-Frame-Options"] = "DENY"
            response.headers["X-XSS-Protection"] = "1; mode=block"
            response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
            response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"

        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate()
    logger.info(f"Starting {settings.PROJECT_NAME} with {settings.describe()}")
    await init_db(settings)
    app.state.services = build_services(settings)
    yield
    # Let in-flight webhook posts finish before the loop closes
    await app.state.services.webhooks.drain()

app = FastAPI(
    title="Merchant Onboarding Pipeline",
    description="Merchant application submission and synchronization service",
    version="1.0.0",
    lifespan=lifespan
)


logger = logging.getLogger("server_exception_handler")


def _error_code(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase.lower().replace(" ", "_")
    except ValueError:
        return "http_error"


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    body = {
        "error": {
            "code": _error_code(exc.status_code),
            "message": str(exc.detail) if exc.detail else HTTPStatus(exc.status_code).phrase,
            "status_code": exc.status_code
        }
    }
    if exc.status_code >= 500:
        logger.error(f"HTTPException handled on {request.url.path}: {exc.detail}")
    else:
        logger.warning(f"HTTPException handled on {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    body = {
        "error": {
            "code": "validation_error",
            "message": "Request validation failed",
            "status_code": 422,
            "details": exc.errors()
        }
    }
    logger.warning(f"Validation error: {exc.errors()}")
    return JSONResponse(status_code=422, content=jsonable_encoder(body, custom_encoder={Exception: str}))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    # Log the traceback and hide internals from the client
    tb = traceback.format_exc()
    logger.error(f"Unhandled exception: {str(exc)}\n{tb}")
    body = {
        "error": {
            "code": "internal_server_error",
            "message": "An unexpected error occurred",
            "status_code": 500
        }
    }
    return JSONResponse(status_code=500, content=body)

# Support comma-separated CLIENT_URL values (e.g. "http://localhost:3000,https://apply.golumino.com")
raw_origins = settings.CLIENT_URL or ""
allowed_origins = [o.strip() for o in raw_origins.split(",") if o.strip()]

# Starlette runs middleware last-added first, so CORS is added last to see preflights first
app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "Accept",
        "Origin",
        "Accept-Language",
        "Content-Language",
        "X-Requested-With",
        "Cache-Control",
        "If-Modified-Since",
        "If-None-Match",
        "Pragma",
    ],
    expose_headers=["Content-Type", "Content-Disposition"],
    max_age=3600,
)

# Submission first so POST /applications/submit never reaches the /{application_id} routes
app.include_router(submission_router)
app.include_router(application_router)
app.include_router(invite_router)
app.include_router(mirror_router)
app.include_router(upload_request_router)
app.include_router(download_router)
app.include_router(audit_router)
app.include_router(auth_router)

@app.get("/")
async def root():
    return {"message": "Merchant Onboarding Pipeline is running!"}

@app.get("/health")
async def health_check():
    return {"status": "healthy", "message": "API is running"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from passport_portal.core.config import settings
from passport_portal.core.database import init_db, close_db
from passport_portal.core.exceptions import PortalError, error_response
from passport_portal.core.logging_config import logger
from passport_portal.core.middleware import RequestLoggingMiddleware
from passport_portal.api.v1.router import api_router
from passport_portal.services.credential_cache import credential_registry


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    logger.info("=" * 60)
    logger.info(f"Starting {settings.APP_NAME}...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"API Version: {settings.API_VERSION}")
    logger.info("=" * 60)

    await init_db()
    logger.info("[Startup] ✓ Database tables ready")

    await credential_registry.start()

    yield

    logger.info(f"Shutting down {settings.APP_NAME}...")
    await credential_registry.stop()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Passport application back office: applicant documents and activity log",
    lifespan=lifespan,
)

# Middleware (last added runs first)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Response-Time"],
)

app.include_router(api_router, prefix=f"/api/{settings.API_VERSION}")


@app.exception_handler(PortalError)
async def portal_exception_handler(request: Request, exc: PortalError):
    if exc.status_code >= 500:
        logger.error(f"[{exc.code}] {exc.message}", extra={"error_details": exc.details})
    else:
        logger.warning(f"[{exc.code}] {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=error_response(exc))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "message": str(exc) if settings.DEBUG else "An error occurred"
        }
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "app_name": settings.APP_NAME,
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }

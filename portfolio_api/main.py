import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from portfolio_api.api import contact
from portfolio_api.core.config import settings
from portfolio_api.core.errors import register_exception_handlers
from portfolio_api.core.logging import setup_logging
from portfolio_api.core.middleware import LatencyMonitorMiddleware, RequestIdMiddleware

setup_logging()
logger = logging.getLogger(__name__)


tags_metadata = [
    {
        "name": "contact",
        "description": "**Contact** - Portfolio contact form relay with validation and rate limiting.",
    },
    {
        "name": "health",
        "description": "**Health** - Liveness and service metadata.",
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting %s v%s", settings.PROJECT_NAME, settings.VERSION)
    logger.info("Environment: %s", settings.ENVIRONMENT)
    logger.info("Allowed origins: %s", ", ".join(settings.ALLOWED_ORIGINS))

    yield

    logger.info("Shutting down...")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## Portfolio Contact API

Receives the contact form of a static portfolio site and forwards each
message to the site owner by email.
    """,
    openapi_tags=tags_metadata,
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
)

# CORS middleware (only the configured origins, POST/OPTIONS, Content-Type)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=False,
    allow_methods=settings.ALLOWED_METHODS,
    allow_headers=settings.ALLOWED_HEADERS,
    expose_headers=["X-Request-ID", "Retry-After"],
)

app.add_middleware(LatencyMonitorMiddleware)
app.add_middleware(RequestIdMiddleware)

register_exception_handlers(app)

app.include_router(contact.router, prefix=settings.API_PREFIX, tags=["contact"])


@app.get("/health", tags=["health"], summary="Health check")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
    }


@app.get("/", tags=["health"], summary="API root")
async def root():
    """Root endpoint with API info"""
    return {
        "name": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "contact": f"{settings.API_PREFIX}/contact",
        "health": "/health",
    }

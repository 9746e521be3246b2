"""CampusDesk FastAPI application entry point.

Creates the FastAPI app, configures logging and CORS, includes the v1
routers, and manages the lifecycle of the backend services (document
store, stats cache, Gemini triage, EmailJS, notification worker and the
complaint service).
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from config.settings import settings
from src.api.router import api_router

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _configure_logging() -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping().get(settings.log_level.upper(), logging.INFO),
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start and stop the CampusDesk services.

    On startup:
      1. Document store (Firestore or in-memory)
      2. Stats cache
      3. Gemini triage and EmailJS clients
      4. Event channel, dispatcher and notification worker
      5. Role resolver, eligibility rules, paging, stats and the complaint service

    On shutdown the worker drains the channel before clients are closed.
    """
    _configure_logging()
    logger.info(
        "app.startup",
        env=settings.env,
        gcp_project=settings.gcp_project_id,
        store_backend=settings.store_backend,
    )
    app.state.start_time = time.time()

    # -- 1. Store -----------------------------------------------------------
    from src.services.store import create_store

    store = create_store(settings)
    app.state.store = store
    logger.info("app.store_initialised", backend=settings.store_backend)

    # -- 2. Cache -----------------------------------------------------------
    from src.services.cache import CacheManager

    cache = CacheManager(redis_url=settings.redis_url or None, namespace="campusdesk:stats:")
    app.state.cache = cache

    # -- 3. External clients ------------------------------------------------
    from src.services.email import EmailService
    from src.services.triage import TriageService

    triage = TriageService(
        project_id=settings.gcp_project_id,
        region=settings.vertex_ai_location,
        model_name=settings.vertex_ai_model,
    )
    app.state.triage = triage
    if not triage.enabled:
        logger.warning("app.triage_fallback_only", note="GCP project not set; keyword triage only")

    email = EmailService(
        service_id=settings.emailjs_service_id,
        public_key=settings.emailjs_public_key,
        private_key=settings.emailjs_private_key,
        template_new=settings.emailjs_template_new,
        template_resolved=settings.emailjs_template_resolved,
    )
    app.state.email = email
    if not settings.email_enabled:
        logger.warning("app.email_disabled", note="EmailJS credentials not set; in-app notifications only")

    # -- 4. Notifications ---------------------------------------------------
    from src.services.notifications import EventChannel, NotificationDispatcher, NotificationWorker

    channel = EventChannel(maxsize=settings.notification_queue_size)
    worker = NotificationWorker(channel, NotificationDispatcher(store, email))
    worker.start()
    app.state.notification_worker = worker

    # -- 5. Core services ---------------------------------------------------
    from src.services.access_scope import RoleResolver
    from src.services.complaints import ComplaintService
    from src.services.eligibility import EligibilityRules, EligibilityWindows
    from src.services.paging import PagedQueryEngine
    from src.services.stats import StatsAggregator

    app.state.role_resolver = RoleResolver(store, require_verified_email=settings.require_verified_email)
    app.state.complaints = ComplaintService(
        store,
        rules=EligibilityRules(EligibilityWindows.from_settings(settings)),
        engine=PagedQueryEngine(store, page_size=settings.page_size),
        stats=StatsAggregator(store, cache, ttl_seconds=settings.stats_cache_ttl),
        triage=triage,
        channel=channel,
    )
    logger.info("app.startup_complete")

    yield

    # -- Shutdown -----------------------------------------------------------
    logger.info("app.shutdown_start")
    await worker.stop()
    await email.close()
    await cache.close()
    await store.close()
    logger.info("app.shutdown_complete")


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="CampusDesk API",
    description=(
        "CampusDesk -- campus complaint management. Students file and follow "
        "complaints; departments and administrators triage, reply and resolve them."
    ),
    version="0.1.0",
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# -- CORS middleware --------------------------------------------------------
# allow_credentials=True must not be combined with allow_origins=["*"].
_IDENTITY_HEADERS = [
    "Content-Type",
    "Accept",
    "X-Gateway-Key",
    "X-User-Id",
    "X-User-Email",
    "X-User-Name",
    "X-User-Email-Verified",
    "X-User-Claims",
]

if settings.is_production:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=_IDENTITY_HEADERS,
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173", "http://127.0.0.1:8000"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS", "HEAD"],
        allow_headers=_IDENTITY_HEADERS,
    )

# -- Include routers -------------------------------------------------------
app.include_router(api_router)


@app.get("/api", response_class=ORJSONResponse)
async def api_info() -> dict:
    """API information endpoint."""
    return {
        "name": "CampusDesk API",
        "version": app.version,
        "docs": "/docs",
        "health": "/api/v1/health",
        "complaints": "/api/v1/complaints",
    }

"""FastAPI application factory.

Creates the app with logging and metrics middleware, CORS, Sentry, the
v1 API router, and a lifespan that wires the meeting engine: repository,
vendor client, calendar service, LLM service, task bus, task workers and
the periodic job scheduler.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.meetbot.config import get_settings
from src.meetbot.core.database import close_db, get_session, init_db
from src.meetbot.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.meetbot.core.redis import close_redis, get_redis_pool
from src.meetbot.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.meetbot.api.v1.router import router as v1_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: wire the engine on startup, tear it down on shutdown.

    Every subsystem is initialized in its own try/except so a missing
    credential or unreachable dependency disables that subsystem (its
    endpoints answer 503) without preventing startup.
    """
    import structlog

    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # ── Persistence & Notifications ──────────────────────────────────────

    try:
        from src.meetbot.meetings.notifications import NotificationDispatcher
        from src.meetbot.meetings.repository import MeetingRepository, TimerRepository

        app.state.meeting_repository = MeetingRepository(session_factory=get_session)
        app.state.timer_repository = TimerRepository(session_factory=get_session)
        app.state.notifier = NotificationDispatcher(session_factory=get_session)
        log.info("engine.repository_initialized")
    except Exception:
        log.warning("engine.repository_init_failed", exc_info=True)
        app.state.meeting_repository = None
        app.state.timer_repository = None
        app.state.notifier = None

    # ── Task Bus ─────────────────────────────────────────────────────────

    try:
        from src.meetbot.events.bus import TaskEventBus
        from src.meetbot.events.dispatcher import TaskDispatcher

        task_bus = TaskEventBus(get_redis_pool())
        app.state.task_bus = task_bus
        app.state.task_dispatcher = TaskDispatcher(task_bus)
        log.info("engine.task_bus_initialized")
    except Exception:
        log.warning("engine.task_bus_init_failed", exc_info=True)
        app.state.task_bus = None
        app.state.task_dispatcher = None

    # ── External Services ────────────────────────────────────────────────

    app.state.meetingbaas_client = None
    if settings.MEETINGBAAS_API_KEY:
        try:
            from src.meetbot.meetings.bot.meetingbaas_client import MeetingBaasClient

            app.state.meetingbaas_client = MeetingBaasClient(
                api_key=settings.MEETINGBAAS_API_KEY,
                base_url=settings.MEETINGBAAS_API_URL,
            )
            log.info("engine.meetingbaas_client_initialized")
        except Exception:
            log.warning("engine.meetingbaas_client_init_failed", exc_info=True)
    else:
        log.warning("engine.meetingbaas_not_configured")

    app.state.calendar_service = None
    if settings.GOOGLE_OAUTH_CLIENT_ID:
        try:
            from src.meetbot.services.gsuite import GoogleCalendarService, GoogleOAuthManager

            app.state.calendar_service = GoogleCalendarService(
                GoogleOAuthManager(
                    client_id=settings.GOOGLE_OAUTH_CLIENT_ID,
                    client_secret=settings.GOOGLE_OAUTH_CLIENT_SECRET,
                )
            )
            log.info("engine.calendar_service_initialized")
        except Exception:
            log.warning("engine.calendar_service_init_failed", exc_info=True)
    else:
        log.warning("engine.google_oauth_not_configured")

    try:
        from src.meetbot.services.llm import LLMService

        app.state.llm_service = LLMService(settings=settings)
        log.info("engine.llm_service_initialized")
    except Exception:
        log.warning("engine.llm_service_init_failed", exc_info=True)
        app.state.llm_service = None

    # ── Engine Components ────────────────────────────────────────────────

    repo = app.state.meeting_repository
    dispatcher = app.state.task_dispatcher
    client = app.state.meetingbaas_client

    app.state.deployer = None
    app.state.status_poller = None
    app.state.sync_worker = None
    app.state.calendar_sync = None
    app.state.completion_pipeline = None
    app.state.insight_generator = None
    app.state.webhook_handler = None

    if repo is not None and dispatcher is not None:
        try:
            from src.meetbot.meetings.bot.deployer import BotDeploymentScheduler
            from src.meetbot.meetings.bot.poller import StatusReconciliationPoller
            from src.meetbot.meetings.calendar.sync import CalendarSyncScheduler, UserSyncWorker
            from src.meetbot.meetings.webhooks import MeetingBaasWebhookHandler

            app.state.calendar_sync = CalendarSyncScheduler(repo, dispatcher)
            if app.state.calendar_service is not None:
                app.state.sync_worker = UserSyncWorker(
                    repo,
                    app.state.calendar_service,
                    dispatcher,
                    lookahead_hours=settings.SYNC_LOOKAHEAD_HOURS,
                )
            if client is not None:
                app.state.deployer = BotDeploymentScheduler(
                    repo, app.state.timer_repository, client, settings,
                )
                app.state.status_poller = StatusReconciliationPoller(repo, client, dispatcher)
            app.state.webhook_handler = MeetingBaasWebhookHandler(
                repo,
                dispatcher,
                notifier=app.state.notifier,
                webhook_secret=settings.MEETINGBAAS_WEBHOOK_SECRET,
            )
            log.info("engine.lifecycle_components_initialized")
        except Exception:
            log.warning("engine.lifecycle_components_init_failed", exc_info=True)

    if repo is not None and dispatcher is not None and client is not None:
        try:
            from src.meetbot.meetings.completion.pipeline import MeetingCompletionPipeline
            from src.meetbot.meetings.completion.transcription import TranscriptionService
            from src.meetbot.meetings.insights.generator import InsightGenerator

            if app.state.llm_service is not None:
                transcription = TranscriptionService(app.state.llm_service, client)
                app.state.completion_pipeline = MeetingCompletionPipeline(
                    repo, transcription, dispatcher,
                )
                app.state.insight_generator = InsightGenerator(
                    repo, app.state.llm_service, notifier=app.state.notifier,
                )
            log.info("engine.completion_components_initialized")
        except Exception:
            log.warning("engine.completion_components_init_failed", exc_info=True)

    # ── Task Workers ─────────────────────────────────────────────────────

    app.state.worker_pool = None
    if settings.TASK_WORKERS_ENABLED and app.state.task_bus is not None:
        try:
            from src.meetbot.events.dispatcher import TaskWorkerPool
            from src.meetbot.meetings.tasks import build_task_handlers

            pool = TaskWorkerPool(app.state.task_bus)
            handlers = build_task_handlers(
                sync_worker=app.state.sync_worker,
                deployer=app.state.deployer,
                pipeline=app.state.completion_pipeline,
                insight_generator=app.state.insight_generator,
            )
            for topic, handler in handlers.items():
                pool.register(topic, handler)
            pool.start()
            app.state.worker_pool = pool
        except Exception:
            log.warning("engine.task_workers_init_failed", exc_info=True)

    # ── Periodic Jobs ────────────────────────────────────────────────────

    app.state.meeting_scheduler = None
    if settings.SCHEDULER_ENABLED:
        try:
            from src.meetbot.meetings.scheduler import MeetingJobScheduler

            scheduler = MeetingJobScheduler(
                calendar_sync=app.state.calendar_sync,
                poller=app.state.status_poller,
                deployer=app.state.deployer,
                sync_interval_minutes=settings.CALENDAR_SYNC_INTERVAL_MINUTES,
                poll_interval_minutes=settings.STATUS_POLL_INTERVAL_MINUTES,
                timer_poll_seconds=settings.BOT_TIMER_POLL_SECONDS,
            )
            scheduler.start()
            app.state.meeting_scheduler = scheduler
        except Exception:
            log.warning("engine.scheduler_init_failed", exc_info=True)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────

    scheduler = getattr(app.state, "meeting_scheduler", None)
    if scheduler is not None:
        scheduler.stop()

    pool = getattr(app.state, "worker_pool", None)
    if pool is not None:
        try:
            await pool.stop()
        except Exception:
            log.warning("engine.task_workers_stop_failed", exc_info=True)

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Meeting Bot Engine API",
        version="0.1.0",
        description="Meeting bot scheduling, status reconciliation and AI insights",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router, prefix="/api/v1")

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()

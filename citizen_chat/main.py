import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from citizen_chat.api.router import api_router
from citizen_chat.core.config import Settings, get_settings
from citizen_chat.core.db import close_engine, create_schema, get_session_factory, init_engine
from citizen_chat.core.logging import configure_logging, resolve_log_level
from citizen_chat.infra.db.journal import SqlJournal
from citizen_chat.infra.org.directory import (
    OrgDirectory,
    PermissiveOrgDirectory,
    StaticOrgDirectory,
)
from citizen_chat.infra.realtime import InMemoryNotifier
from citizen_chat.services.chat_service import ChatService
from citizen_chat.services.dispatch_sweeper import DispatchSweeper

settings = get_settings()
settings.validate_security_settings()

logger = logging.getLogger(__name__)


def build_org_directory(settings: Settings) -> OrgDirectory:
    if settings.org_directory_path:
        return StaticOrgDirectory.from_file(settings.org_directory_path)
    return PermissiveOrgDirectory()


def build_chat_service(settings: Settings, journal: SqlJournal | None = None) -> ChatService:
    return ChatService(
        org=build_org_directory(settings),
        notifier=InMemoryNotifier(settings.notifier_subscriber_buffer),
        journal=journal,
        default_handling_seconds=settings.default_handling_time_seconds,
        default_max_concurrent_chats=settings.default_max_concurrent_chats,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(
        resolve_log_level(settings.log_level), json_output=settings.log_json
    )

    # Initialize infrastructure
    engine = None
    journal: SqlJournal | None = None
    if settings.db_persistence_enabled:
        engine = init_engine(settings)
        if settings.db_auto_create:
            await create_schema(engine)
        journal = SqlJournal(get_session_factory())
    app.state.db_engine = engine

    service = build_chat_service(settings, journal)
    if journal is not None:
        await service.restore(await journal.load())
    app.state.chat_service = service

    sweeper: DispatchSweeper | None = None
    if settings.dispatch_sweep_interval_seconds > 0:
        sweeper = DispatchSweeper(service, settings.dispatch_sweep_interval_seconds)
        sweeper.start()
    logger.info(
        "Chat engine started",
        extra={
            "persistence": settings.db_persistence_enabled,
            "sweep_interval_seconds": settings.dispatch_sweep_interval_seconds,
        },
    )

    yield

    # Graceful shutdown
    if sweeper is not None:
        await sweeper.stop()
    service.notifier.close_all()
    if engine is not None:
        await close_engine(engine)


app = FastAPI(
    title="Citizen Support Chat API",
    version="0.1.0",
    docs_url="/docs" if settings.app_env != "production" else None,
    redoc_url="/redoc" if settings.app_env != "production" else None,
    lifespan=lifespan,
)

if settings.trusted_hosts:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.trusted_hosts,
    )

if settings.force_https:
    app.add_middleware(HTTPSRedirectMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "X-Citizen-Session",
        "X-Actor-Id",
        "X-Actor-Role",
    ],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault(
        "Referrer-Policy",
        "strict-origin-when-cross-origin",
    )
    response.headers.setdefault(
        "Permissions-Policy",
        "camera=(), microphone=(), geolocation=()",
    )
    if settings.force_https:
        response.headers.setdefault(
            "Strict-Transport-Security",
            "max-age=31536000; includeSubDomains",
        )
    return response


app.include_router(api_router, prefix="/api")


@app.get("/", tags=["meta"])
async def root() -> dict[str, str]:
    return {"service": "citizen-chat-engine", "status": "ok"}

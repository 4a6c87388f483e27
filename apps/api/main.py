import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from apps.api.api.routes import metrics, ops, ping, tickets
from apps.api.core.config import Settings, get_settings
from apps.api.core.logging import configure_logging, init_tracer, shutdown_tracer
from apps.api.metrics import metrics_registry
from apps.api.ops.simulator import TransitionSimulator
from apps.api.services.ops import OpsLogRepository, OpsService, OpsUnavailableError
from apps.api.services.tickets import TicketRepository, TicketService


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure a PostgreSQL DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    for prefix in ("postgresql://", "postgres://"):
        if dsn.startswith(prefix):
            return "postgresql+asyncpg://" + dsn[len(prefix) :]
    return dsn


def build_simulator(settings: Settings) -> TransitionSimulator:
    return TransitionSimulator(
        seed=settings.ops_random_seed,
        send_success_rate=settings.ops_send_success_rate,
        query_success_rate=settings.ops_query_success_rate,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    app.state.metrics_registry = metrics_registry
    app.state.ticket_service = None
    app.state.ops_service = None

    db_engine = None
    try:
        db_engine = create_async_engine(_to_asyncpg_dsn(settings.database_url), future=True)
        session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
        ticket_repository = TicketRepository(session_factory, engine=db_engine)
        await ticket_repository.ensure_schema()
        app.state.ticket_service = TicketService(ticket_repository)
        app.state.ops_service = OpsService(
            ticket_repository,
            OpsLogRepository(session_factory),
            simulator=build_simulator(settings),
            metrics=metrics_registry,
        )
        logger.info("Ticket storage ready (%s)", settings.environment)
    except Exception:
        logger.exception("Ticket storage unavailable; ticket and OPS endpoints will return 503")
        if db_engine is not None:
            await db_engine.dispose()
            db_engine = None
    try:
        yield
    finally:
        if db_engine is not None:
            await db_engine.dispose()
        shutdown_tracer(tracer_provider)
        logging.getLogger(__name__).info("Shutdown complete")


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        allow_credentials="*" not in settings.cors_allowed_origins,
    )
    app.include_router(ping.router)
    app.include_router(tickets.router)
    app.include_router(ops.router)
    app.add_exception_handler(OpsUnavailableError, ops.ops_unavailable_handler)
    app.include_router(metrics.router)
    return app


app = create_app()

"""
HTTP service exposing document publication and run control.

The engine is either injected (tests, embedding) or wired from settings at
startup, choosing in-memory or PostgreSQL storage and local or Redis
leases and timers.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flow_engine import __version__
from flow_engine.actions import ActionRegistry
from flow_engine.api.routes import router
from flow_engine.config import Settings, get_settings
from flow_engine.core.models import RetryConfig
from flow_engine.orchestrator.documents import DocumentService
from flow_engine.orchestrator.engine import WorkflowEngine
from flow_engine.scheduler import InMemoryTimerService, RedisTimerService
from flow_engine.storage import InMemoryDocumentStore, InMemoryRunStore, LocalLeaseManager
from flow_engine.storage.postgres import Database, PostgresDocumentStore, PostgresRunStore
from flow_engine.storage.redis import RedisConnection, RedisLeaseManager

logger = logging.getLogger(__name__)


async def build_engine(app: FastAPI, settings: Settings, actions: ActionRegistry) -> WorkflowEngine:
    """
    Wire an engine from settings.

    Connections opened here are kept on ``app.state`` and closed by the
    lifespan on shutdown.
    """
    if settings.engine.storage_backend == "postgres":
        database = Database(settings.postgres)
        await database.init()
        app.state.database = database
        document_store = PostgresDocumentStore(database)
        run_store = PostgresRunStore(database)
        logger.info("Using PostgreSQL document and run stores")
    else:
        document_store = InMemoryDocumentStore()
        run_store = InMemoryRunStore()

    redis_client = None
    if settings.engine.lease_backend == "redis" or settings.timer.backend == "redis":
        redis_connection = RedisConnection(settings.redis)
        await redis_connection.init()
        app.state.redis_connection = redis_connection
        redis_client = redis_connection.client
        logger.info("Using Redis for leases or timers")

    if settings.engine.lease_backend == "redis":
        leases = RedisLeaseManager(
            redis_client,
            ttl=settings.engine.lease_ttl,
            acquire_timeout=settings.engine.lease_acquire_timeout,
            retry_interval=settings.engine.lease_retry_interval,
            key_prefix=settings.redis.key_prefix,
        )
    else:
        leases = LocalLeaseManager(acquire_timeout=settings.engine.lease_acquire_timeout)

    if settings.timer.backend == "redis":
        timers = RedisTimerService(
            redis_client,
            poll_interval=settings.timer.poll_interval,
            batch_size=settings.timer.batch_size,
            key_prefix=settings.redis.key_prefix,
        )
    else:
        timers = InMemoryTimerService(
            poll_interval=settings.timer.poll_interval,
            batch_size=settings.timer.batch_size,
        )

    return WorkflowEngine(
        documents=DocumentService(
            document_store,
            strict_decision_branches=settings.validation.strict_decision_branches,
        ),
        runs=run_store,
        timers=timers,
        actions=actions,
        leases=leases,
        default_retry=RetryConfig(**settings.retry.model_dump()),
        recover_on_start=settings.engine.recover_on_start,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Start the engine, which recovers parked runs, and close connections on shutdown.
    """
    settings = get_settings()

    logger.info(f"Starting {settings.app_name}")

    engine: Optional[WorkflowEngine] = getattr(app.state, "engine", None)
    if engine is None:
        actions = getattr(app.state, "actions", None) or ActionRegistry(
            timeout=settings.engine.action_timeout
        )
        engine = await build_engine(app, settings, actions)
        app.state.engine = engine

    await engine.start()
    logger.info(f"Engine accepting events ({settings.environment.value})")

    yield

    logger.info("Stopping engine; parked runs resume on next start")

    await engine.stop()

    database = getattr(app.state, "database", None)
    if database is not None:
        await database.close()

    redis_connection = getattr(app.state, "redis_connection", None)
    if redis_connection is not None:
        await redis_connection.close()

    logger.info(f"{settings.app_name} stopped")


def create_app(
    engine: Optional[WorkflowEngine] = None,
    actions: Optional[ActionRegistry] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        engine: Pre-built engine; when omitted one is wired from settings
        actions: Business-action implementations for the wired engine
    """
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = FastAPI(
        title=settings.app_name,
        description="Business workflow graph editor backend and execution engine",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.engine = engine
    app.state.actions = actions

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.get("/", tags=["root"])
    async def root():
        return {
            "name": settings.app_name,
            "version": __version__,
            "status": "running",
        }

    return app

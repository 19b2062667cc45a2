import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from signing_desk.api.errors import register_exception_handlers
from signing_desk.api.routes import envelopes, health, webhooks
from signing_desk.core.config import get_settings
from signing_desk.core.logging import bind_context, clear_context, configure_logging, get_logger
from signing_desk.db.session import build_engine, build_session_factory, init_models
from signing_desk.integrations.esignature.registry import ProviderRegistry
from signing_desk.services.audit import SqlAuditTrail
from signing_desk.services.envelope_service import EnvelopeService
from signing_desk.services.repository import SqlAlchemyEnvelopeRepository


logger = get_logger(__name__)


def create_application(service: Optional[EnvelopeService] = None) -> FastAPI:
    """
    Build the API application.

    When ``service`` is given it is used as-is and the caller owns its
    teardown; otherwise the lifespan wires a database-backed service and
    closes it on shutdown.
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(application: FastAPI) -> AsyncIterator[None]:
        if service is not None:
            application.state.envelope_service = service
            yield
            return

        engine = build_engine(settings.database_url)
        await init_models(engine)
        session_factory = build_session_factory(engine)
        registry = ProviderRegistry(settings)
        application.state.envelope_service = EnvelopeService(
            repository=SqlAlchemyEnvelopeRepository(session_factory),
            registry=registry,
            audit=SqlAuditTrail(session_factory),
            settings=settings,
        )
        logger.info("application.startup", environment=settings.environment)
        try:
            yield
        finally:
            await registry.close()
            await engine.dispose()
            logger.info("application.shutdown")

    application = FastAPI(title=settings.app_name, lifespan=lifespan)
    application.include_router(health.router)
    application.include_router(envelopes.router)
    application.include_router(webhooks.router)
    register_exception_handlers(application)

    if settings.allowed_origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=[str(origin) for origin in settings.allowed_origins],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @application.middleware("http")
    async def request_context(request: Request, call_next):
        clear_context()
        bind_context(request_id=request.headers.get("X-Request-ID") or uuid.uuid4().hex, path=request.url.path)
        return await call_next(request)

    return application


app = create_application()

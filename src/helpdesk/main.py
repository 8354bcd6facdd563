"""
Helpdesk Triage - Main Application
===================================

FastAPI service that accepts workflow events and triages new tickets in the
background.

Layers:
- Interfaces: FastAPI event routes
- Application: services, DTOs and workflow definitions
- Domain: entities, rule engine and prompt contract
- Infrastructure: database, LLM, mail transport, rules file
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from helpdesk import __version__
from helpdesk.config import settings
from helpdesk.core import ConfigurationException
from helpdesk.infrastructure.database import close_database, create_tables, init_database
from helpdesk.infrastructure.llm import ILLMClient, create_llm_client
from helpdesk.infrastructure.mail import IMailTransport, create_mail_transport
from helpdesk.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    global_exception_handler,
)
from helpdesk.shared.infrastructure.logging import get_logger, setup_logging
from helpdesk.triage.application import (
    PAYLOAD_MODELS,
    ClassificationService,
    NotificationService,
    create_workflow_functions,
)
from helpdesk.triage.domain import PriorityRules
from helpdesk.triage.infrastructure import RulesConfigManager, SQLAlchemyStorageProvider
from helpdesk.triage.interfaces import events_router
from helpdesk.workflow import EventDispatcher, SQLAlchemyStepJournal, WorkflowEngine

logger = get_logger(__name__)


def build_dispatcher(
    llm_client: ILLMClient,
    mail_transport: IMailTransport,
    rules_provider: Callable[[], PriorityRules],
) -> EventDispatcher:
    """Wire the triage workflows onto a dispatcher backed by the SQL journal."""
    functions = create_workflow_functions(
        SQLAlchemyStorageProvider(),
        ClassificationService(llm_client),
        NotificationService(mail_transport),
        rules_provider=rules_provider,
    )
    dispatcher = EventDispatcher(
        WorkflowEngine(SQLAlchemyStepJournal()),
        background=settings.workflow_background,
    )
    dispatcher.register_all(functions, PAYLOAD_MODELS)
    return dispatcher


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Startup: logging, database, rules watcher, clients, dispatcher (and resume
    of runs interrupted by the previous shutdown, scheduled in the background
    or finished inline when ``workflow_background`` is off). Shutdown in
    reverse.

    Without LLM credentials the API still serves health checks, but events are
    refused with 503.
    """
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Helpdesk Triage", extra={
        "version": __version__,
        "environment": settings.environment
    })

    app.state.settings = settings
    app.state.dispatcher = None

    init_database()
    try:
        await create_tables()
    except Exception as e:
        logger.warning(f"Database not available - workflow runs will fail until it is: {e}")

    rules_manager = RulesConfigManager()
    rules_manager.load(settings.triage_rules_path)
    rules_manager.start_watching()
    app.state.rules_manager = rules_manager

    mail_transport = create_mail_transport()
    app.state.mail_transport = mail_transport

    try:
        llm_client = create_llm_client()
    except ConfigurationException as e:
        logger.warning(f"LLM client not configured - triage disabled: {e.message}")
        llm_client = None
    app.state.llm_client = llm_client

    dispatcher = None
    if llm_client is not None:
        dispatcher = build_dispatcher(llm_client, mail_transport, lambda: rules_manager.rules)
        await dispatcher.start()
        try:
            await dispatcher.resume_incomplete()
        except Exception as e:
            logger.warning(f"Could not resume incomplete workflow runs: {e}")
    app.state.dispatcher = dispatcher

    logger.info("Helpdesk Triage started", extra={"triage_enabled": dispatcher is not None})

    yield

    logger.info("Shutting down Helpdesk Triage")
    if dispatcher is not None:
        await dispatcher.stop()
    rules_manager.stop_watching()
    await mail_transport.close()
    await close_database()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Helpdesk Triage API",
        description="""
    ## Helpdesk Ticket Triage and Assignment

    New tickets are triaged in the background: an LLM verdict is blended with
    deterministic priority rules, a moderator is picked by skills (admin as
    fallback) and notified by email.

    **Endpoints:**
    - `POST /events` - Send `ticket/create` or `user/signup`
    - `GET /events/runs/{run_id}` - Workflow run status and completed steps
    """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Last added runs first: the correlation id is set before request logging
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(events_router)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """Liveness plus the state of the triage pipeline's dependencies."""
        state = request.app.state
        dispatcher = getattr(state, "dispatcher", None)
        return {
            "status": "healthy",
            "version": __version__,
            "environment": settings.environment,
            "checks": {
                "dispatcher": "running" if dispatcher is not None and dispatcher.is_running else "stopped",
                "llm_client": "available" if getattr(state, "llm_client", None) else "not_configured",
                "rules": "loaded" if getattr(state, "rules_manager", None) else "not_loaded",
            }
        }

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "service": "Helpdesk Triage",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
            "modules": {
                "events": {
                    "prefix": "/events",
                    "endpoints": [
                        "POST /events - Send a workflow event",
                        "GET /events/runs/{run_id} - Get workflow run status"
                    ]
                }
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "helpdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )

"""
Slash Negotiation Engine - FastAPI Application

Main entry point for the negotiation engine backend.

Architecture:
- Bill + Leverage → StrategyEngine → NegotiationPlan
- NegotiationPlan → CallDispatcher → external call handle
- Telnyx webhooks → CallCorrelator → NegotiationOrchestrator → RecordStore
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .config import EngineSettings, load_settings
from .routers import negotiations_router, webhooks_router
from .services.negotiation import (
    CallCorrelator, InMemoryLeverageRepository, InMemoryRecordStore,
    NegotiationOrchestrator, SqlLeverageRepository, SqlRecordStore,
)
from .services.research import TavilyResearchClient
from .services.telephony import TelnyxCallDispatcher

logger = logging.getLogger(__name__)


def build_orchestrator(settings: EngineSettings) -> NegotiationOrchestrator:
    """Wire collaborators for the configured backend."""
    if settings.store_backend == "sql":
        from .database import init_db
        init_db()
        store = SqlRecordStore()
        leverage = SqlLeverageRepository()
    elif settings.store_backend == "memory":
        store = InMemoryRecordStore()
        leverage = InMemoryLeverageRepository()
    else:
        raise ValueError(f"Unknown STORE_BACKEND: {settings.store_backend}")

    research = TavilyResearchClient(settings.tavily_api_key) if settings.tavily_api_key else None
    if research is None:
        logger.warning("TAVILY_API_KEY not set; plans will use repository leverage only")

    return NegotiationOrchestrator(
        store=store,
        correlator=CallCorrelator(),
        dispatcher=TelnyxCallDispatcher(settings),
        leverage=leverage,
        research=research,
        settings=settings,
    )


def create_app(
    settings: Optional[EngineSettings] = None,
    orchestrator: Optional[NegotiationOrchestrator] = None,
) -> FastAPI:
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build the orchestrator on startup, stop its timers on shutdown."""
        logging.basicConfig(
            level=getattr(logging, settings.log_level, logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        app.state.orchestrator = orchestrator or build_orchestrator(settings)
        logger.info(f"Negotiation engine started (store={settings.store_backend})")
        yield
        await app.state.orchestrator.shutdown()

    app = FastAPI(
        lifespan=lifespan,
        title="Slash Negotiation Engine",
        description="""
        Slash Negotiation Engine - Automated Bill Negotiation

        Researches competitor pricing, plans a negotiation, places the call
        to the provider's retention line and tracks it to a new rate.

        ## Pipeline
        1. **Strategy Engine**: Bill + Leverage → NegotiationPlan
        2. **Call Dispatcher**: NegotiationPlan → outbound call
        3. **Webhook Ingress**: call events → Orchestrator state machine
        """,
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.include_router(webhooks_router)
    app.include_router(negotiations_router)

    @app.get("/")
    async def root():
        """Root endpoint - API information."""
        return {
            "name": "Slash Negotiation Engine",
            "version": "1.0.0",
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "version": "1.0.0"}

    return app


app = create_app()


# For running with: python -m slash_engine.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)

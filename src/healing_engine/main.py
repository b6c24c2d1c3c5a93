import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from healing_engine.api.healing_endpoints import get_healing_engine, router as healing_router
from healing_engine.core.config import settings
from healing_engine.core.logging_config import setup_healing_logging
from healing_engine.services.engine import HealingEngine


def create_app(engine: Optional[HealingEngine] = None) -> FastAPI:
    """Build the API application.

    Args:
        engine: Engine to serve; by default one is built from settings on the
            first request
    """
    app = FastAPI(title="Failure Triage & Self-Healing Engine")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- API Router ---
    app.include_router(healing_router)
    if engine is not None:
        app.dependency_overrides[get_healing_engine] = lambda: engine

    @app.on_event("startup")
    async def startup_event():
        setup_healing_logging(settings.LOG_LEVEL, settings.LOG_DIR)
        logging.info("Application startup complete.")

    @app.on_event("shutdown")
    async def shutdown_event():
        logging.info("Application shutdown complete.")

    return app


# python -m uvicorn healing_engine.main:app --reload
app = create_app()

"""FastAPI status API application factory."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from funding_sniper.dashboard.routes import api


def create_dashboard_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the read-only status API.

    Route handlers read the orchestrator and trading session from app.state;
    main.py (or a test) is responsible for putting them there.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to inject startup/shutdown logic.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Funding Sniper Status",
        lifespan=lifespan,
    )
    app.include_router(api.router, prefix="/api")
    return app

"""
Tally - multi-cloud cost aggregation service

Pulls billing, inventory and budget data from AWS, Azure and GCP,
attributes spend to individual resources, and ranks cost optimization
recommendations.

Run from the ``tally/`` directory with ``python cmd/main.py``.
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Make ``api``, ``internal`` and ``pkg`` importable when this file is run
# directly rather than through an installed distribution.
_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from api.routes import configure_routes, router as api_router  # noqa: E402
from internal.correlation.engine import CorrelationEngine  # noqa: E402
from internal.optimizer.engine import RecommendationEngine  # noqa: E402
from pkg.cloud.factory import build_backends  # noqa: E402
from pkg.config import Settings, get_settings  # noqa: E402
from pkg.database import create_tables, init_engine  # noqa: E402
from pkg.errors import TallyError  # noqa: E402

logger = logging.getLogger("tally")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Assemble the FastAPI application around *settings*."""

    settings = settings or get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Connecting to %s ...", settings.sqlalchemy_url.split("://", 1)[0])
        try:
            init_engine(settings.sqlalchemy_url)
            create_tables()
            logger.info("Database ready.")
        except Exception as exc:
            logger.warning(
                "Database unavailable at startup (%s); connection, sync and "
                "read endpoints will fail until it is reachable.",
                exc,
            )
        yield
        logger.info("Tally shutting down.")

    app = FastAPI(
        title="Tally - multi-cloud cost aggregation",
        description=(
            "Aggregates AWS, Azure and GCP costs, correlates spend with "
            "resources, and ranks optimization recommendations."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    configure_routes(
        backend_factory=build_backends,
        correlation=CorrelationEngine(),
        optimizer=RecommendationEngine(),
        settings=settings,
    )
    if not settings.use_live_backends:
        logger.info("Live backends disabled; serving simulated provider data.")

    app.include_router(api_router)

    @app.exception_handler(TallyError)
    async def tally_error_handler(request: Request, exc: TallyError) -> JSONResponse:
        # errors the routes did not translate themselves
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": {"code": exc.code, "message": exc.message, "details": exc.details}},
        )

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": "tally",
            "live_backends": settings.use_live_backends,
        }

    return app


app = create_app()

if __name__ == "__main__":
    settings = get_settings()
    print("==============================================")
    print("  Tally - multi-cloud cost aggregation")
    print(f"  listening on :{settings.tally_port}")
    print("==============================================")
    uvicorn.run(app, host="0.0.0.0", port=settings.tally_port)

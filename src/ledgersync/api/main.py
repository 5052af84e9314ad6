"""FastAPI application factory."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlmodel import SQLModel

from ledgersync.api.routes import milestones, sync as sync_routes
from ledgersync.db.engine import get_engine


def create_app(engine=None) -> FastAPI:
    """
    Build and return the FastAPI app.

    Args:
        engine: Engine to serve from; defaults to the module-level engine,
                resolved at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.engine = engine if engine is not None else get_engine()
        # Create tables on startup (idempotent)
        SQLModel.metadata.create_all(app.state.engine)
        yield

    app = FastAPI(
        title="ledgersync",
        description="Accounting sync engine and milestone invoicing",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(sync_routes.router, tags=["sync"])
    app.include_router(milestones.router, tags=["milestones"])

    return app


# Module-level app instance for uvicorn
app = create_app()

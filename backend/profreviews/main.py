import logging
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import Engine
from sqlmodel import SQLModel
from .access_context import AccessContext
from .aggregates import subscribe_aggregate_refresh
from .config import CORS_ORIGINS, LOG_LEVEL
from .database import engine as default_engine
from .device_storage import KeyValueStore
from .routers import auth, reviews, access, catalog, admin

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def create_app(
    engine: Optional[Engine] = None,
    anon_store: Optional[KeyValueStore] = None,
    **gate_kwargs,
) -> FastAPI:
    engine = engine or default_engine

    app = FastAPI(title="Professor Reviews API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    context = AccessContext.from_engine(engine, anon_store=anon_store, **gate_kwargs)
    subscribe_aggregate_refresh(context.bus, engine)
    app.state.engine = engine
    app.state.access = context

    @app.on_event("startup")
    def on_startup():
        SQLModel.metadata.create_all(engine)

    app.include_router(auth.router, prefix="/api")
    app.include_router(reviews.router, prefix="/api")
    app.include_router(access.router, prefix="/api")
    app.include_router(catalog.router, prefix="/api")
    app.include_router(admin.router, prefix="/api")

    @app.get("/api/health")
    async def health_check():
        return {"status": "ok"}

    return app


app = create_app()

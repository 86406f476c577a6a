from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from geopresence.config import settings, setup_logging
from geopresence.database import build_storage
from geopresence.delivery import DeliveryEngine
from geopresence.exceptions import register_exception_handlers
from geopresence.presence import PresenceRegistry
from geopresence.storage.base import StorageAdapter
from geopresence.websocket_manager import ConnectionManager


def create_app(storage: Optional[StorageAdapter] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        backend = storage or build_storage()
        await backend.init()
        app.state.storage = backend
        app.state.engine = DeliveryEngine(
            backend,
            PresenceRegistry(),
            ConnectionManager(),
            storage_timeout=settings.STORAGE_TIMEOUT_SECONDS,
        )
        yield
        await backend.close()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.VERSION,
        description="Realtime presence and direct messaging API",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    from geopresence.api.v1 import auth, messages, users, websocket

    app.include_router(auth.router, prefix="/api", tags=["auth"])
    app.include_router(users.router, prefix="/api", tags=["users"])
    app.include_router(messages.router, prefix="/api", tags=["messages"])
    app.include_router(websocket.router, prefix="/api", tags=["websocket"])

    @app.get("/")
    async def root():
        return {
            "message": f"{settings.APP_NAME} API",
            "version": settings.VERSION,
            "endpoints": [
                "/api/users",
                "/api/register",
                "/api/login",
                "/api/location",
                "/api/messages/{from}/{to}",
                "/api/ws",
            ],
        }

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()

"""
ASGI application entry point: FastAPI routes plus the Socket.IO server.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import socketio
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from teamboard.config import get_settings
from teamboard.db import Store
from teamboard.dependencies import get_hub, get_store
from teamboard.routes import router
from teamboard.schemas import HealthResponse
from teamboard.sockets import RealtimeHandlers, create_socket_server

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Pick the store mode before the first request arrives.
    store = get_store()
    logger.info("Teamboard started with %s store", store.mode)
    yield


async def _invalid_request(request: Request, exc: RequestValidationError):
    logger.info("Invalid request to %s: %s", request.url.path, exc.errors())
    return JSONResponse({"success": False, "message": "Invalid request"})


async def _unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"success": False, "message": "Request failed"})


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Teamboard Backend", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, _invalid_request)
    app.add_exception_handler(Exception, _unexpected_error)
    app.include_router(router, prefix=settings.api_prefix)

    @app.get("/", response_model=HealthResponse)
    def read_root(store: Store = Depends(get_store)):
        return HealthResponse(success=True, service="teamboard", store=store.mode)

    return app


def create_asgi_app() -> socketio.ASGIApp:
    """Wrap the HTTP app so Socket.IO traffic is served from the same port."""
    settings = get_settings()
    server = create_socket_server(settings)
    RealtimeHandlers(server, get_hub(), get_store).register()
    return socketio.ASGIApp(server, other_asgi_app=create_app())


app = create_asgi_app()

import logging
from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from servicehub.api.api import api_router
from servicehub.core.config import settings
from servicehub.core.exceptions import DomainException
from servicehub.db.database import init_db, close_db
from servicehub.services.notification_service import init_notification_bus
from servicehub.sockets import SocketHandlers

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

cors_origins = "*" if "*" in settings.BACKEND_CORS_ORIGINS else settings.BACKEND_CORS_ORIGINS

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=cors_origins)
bus = init_notification_bus(sio)
SocketHandlers(sio, bus).register()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup: create tables
    await init_db()
    logger.info("%s started", settings.PROJECT_NAME)
    yield
    # Shutdown: close database connections
    await close_db()


fastapi_app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)


@fastapi_app.exception_handler(DomainException)
async def domain_exception_handler(request: Request, exc: DomainException):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


fastapi_app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

fastapi_app.include_router(api_router, prefix=settings.API_V1_STR)


@fastapi_app.get("/")
def root():
    return {"message": "Welcome to ServiceHub Backend", "version": "0.1.0"}


# Socket.IO is served on /socket.io, everything else goes to FastAPI
app = socketio.ASGIApp(sio, other_asgi_app=fastapi_app)

# app/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import (
    health,
    auth,
    users,
    tickets,
    admin,
    technician,
)

from app.core.config import settings
from app.core.errors import register_exception_handlers
from app.core.logging import setup_logging, RequestIdMiddleware
from app.db.session import create_engine_from_url, make_sessionmaker
from app.services.notifications import build_notifier, close_notifier


setup_logging(settings.log_level)
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # pool is created once here and drained on shutdown
    engine = create_engine_from_url(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )
    app.state.engine = engine
    app.state.sessionmaker = make_sessionmaker(engine)
    app.state.notifier = build_notifier(settings)
    log.info("startup", extra={"env": settings.env, "notifications": settings.notifications_backend})
    try:
        yield
    finally:
        close_notifier(app.state.notifier)
        await engine.dispose()
        log.info("shutdown")


app = FastAPI(
    title="Helpdesk Tickets",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url=None,
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# ==== Middlewares ====
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestIdMiddleware)

register_exception_handlers(app)

# ==== API under /api ====
app.include_router(health.router,     prefix="/api",            tags=["health"])
app.include_router(auth.router,       prefix="/api",            tags=["auth"])
app.include_router(users.router,      prefix="/api",            tags=["directory"])
app.include_router(tickets.router,    prefix="/api/tickets",    tags=["tickets"])
app.include_router(admin.router,      prefix="/api/admin",      tags=["admin"])
app.include_router(technician.router, prefix="/api/technician", tags=["technician"])

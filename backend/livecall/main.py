# livecall/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from livecall.config import settings
from livecall.core.db import init_db, close_db
from livecall.core.errors import register_exception_handlers

from livecall.api.v1.routers import auth, hosts, calls, transactions, leaderboard, free_target
from livecall.api.v1.routers.ws_signaling import router as ws_signaling_router

from livecall.core.bootstrap import ensure_default_admin
from livecall.services.sweeper import sweeper

logger = logging.getLogger("uvicorn.error")

app = FastAPI(title=settings.APP_NAME)

# CORS (with Cookie)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

@app.on_event("startup")
async def on_startup():
    await init_db()
    # Ensure there's a default admin account on first run
    await ensure_default_admin()
    if settings.call_sweeper_enabled:
        sweeper.start()
    else:
        logger.info("[sweeper] disabled by CALL_SWEEPER_ENABLED")

@app.on_event("shutdown")
async def on_shutdown():
    await sweeper.stop()
    await close_db()

# REST
app.include_router(auth.router, prefix="/api/v1")
app.include_router(hosts.router, prefix="/api/v1")
app.include_router(calls.router, prefix="/api/v1")
app.include_router(transactions.router, prefix="/api/v1")
app.include_router(leaderboard.router, prefix="/api/v1")
app.include_router(free_target.router, prefix="/api/v1")

# WebSocket
app.include_router(ws_signaling_router)

@app.get("/healthz")
def healthz():
    return {"ok": True}

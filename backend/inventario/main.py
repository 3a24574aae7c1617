from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

logger = logging.getLogger(__name__)

# ---- load .env files (backend/.env then repo .env) ----------------------
CURRENT_FILE = Path(__file__).resolve()
BACKEND_DIR = CURRENT_FILE.parents[1]
REPO_ROOT = CURRENT_FILE.parents[2]

_env_candidates = [
    BACKEND_DIR / ".env.local",
    BACKEND_DIR / ".env",
    REPO_ROOT / ".env.local",
    REPO_ROOT / ".env",
]
_loaded = []
for env_path in _env_candidates:
    if env_path.exists():
        # Do not override already-set env vars; load in priority order
        load_dotenv(env_path, override=False)
        _loaded.append(str(env_path))

if _loaded:
    logger.info("Loaded env files: %s", ", ".join(_loaded))

# settings are read at import time, so these come after the .env load
from inventario.core.celery_app import init_celery  # noqa: E402
from inventario.core.database import init_db  # noqa: E402
from inventario.core.settings import AUTO_CREATE_TABLES  # noqa: E402
from inventario.routers import stock  # noqa: E402


app = FastAPI(title="Inventario Stock API")


# ---- CORS (dev-friendly) ----------------------------------------------
_default_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
_env = os.getenv("FRONTEND_ORIGINS") or os.getenv("FRONTEND_ORIGIN") or ""
_env_list = [o.strip() for o in _env.split(",") if o and o.strip()]
origins = sorted(set(_default_origins + _env_list))

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=86400,
)

# ---- register routers ------------------------------------------------------
app.include_router(stock.router)


@app.on_event("startup")
def _startup() -> None:
    if AUTO_CREATE_TABLES:
        init_db()
    init_celery()


# ---- simple health check ---------------------------------------------------
@app.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe for the container / process manager."""
    return {"status": "ok"}

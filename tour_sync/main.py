import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tour_sync.config import settings
from tour_sync.database import async_session_factory, init_db
from tour_sync.routers import cleanup, sync
from tour_sync.utils.auth import seed_api_token

logger = logging.getLogger(__name__)


async def _seed_token() -> None:
    """Register the configured API token so sync endpoints accept it."""
    if not settings.SYNC_API_TOKEN:
        logger.warning("SYNC_API_TOKEN is not set; only previously stored tokens are accepted")
        return
    await seed_api_token(async_session_factory, settings.SYNC_API_TOKEN)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
    if settings.SHEET_SOURCE == "excel":
        settings.EXCEL_DIR.mkdir(parents=True, exist_ok=True)
    await init_db()
    await _seed_token()
    yield
    # Shutdown (nothing to clean up)


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register all routers under /api
API_PREFIX = "/api"
app.include_router(sync.router, prefix=API_PREFIX)
app.include_router(cleanup.router, prefix=API_PREFIX)


@app.get("/health")
async def health_check() -> dict:
    return {"status": "ok", "version": settings.APP_VERSION}

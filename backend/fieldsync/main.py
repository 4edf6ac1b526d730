"""
FieldSync - offline-first sync core for municipal property field collection.
Local API consumed by the field UI: sync status, queue, manual retry, login/logout.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from .api import auth, collections, forms, missions, sync
from .api.deps import remote_client, sync_core
from .core.config import settings
from .core.errors import LocalStorageError

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sync_core.store.init_schema()
    await sync_core.start(check_reachable=remote_client.ping)
    yield
    sync_core.close()


app = FastAPI(
    title="FieldSync Offline Core",
    description=(
        "Durable sync queue, connectivity-aware processor, conflict resolution "
        "and offline authentication for field property data collection."
    ),
    version=settings.VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # local device API; the UI shell is served from another origin
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix="/api/v1")
app.include_router(sync.router, prefix="/api/v1")
app.include_router(collections.router, prefix="/api/v1")
app.include_router(missions.router, prefix="/api/v1")
app.include_router(forms.router, prefix="/api/v1")


@app.exception_handler(LocalStorageError)
async def local_storage_error_handler(request: Request, exc: LocalStorageError):
    logger.error("Local storage failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Could not save to local storage"})


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": settings.APP_NAME, "version": settings.VERSION}

import asyncio
from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from upnext.config import Settings, settings as default_settings
from upnext.errors import NotAuthenticated, NotFound, RateLimited, StoreUnavailable, SyncError, Unauthorized
from upnext.routers import api_router
from upnext.scheduler import create_scheduler, start_scheduler, stop_scheduler, update_schedule
from upnext.services import StaticTokenProvider, SyncService, TraktClient, UpNextProjector
from upnext.services.credentials import CredentialProvider
from upnext.store import EntityStore

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[EntityStore] = None,
    client: Optional[TraktClient] = None,
    credentials: Optional[CredentialProvider] = None
) -> FastAPI:
    """
    Build the host application. Collaborators not passed in come from settings.

    ``credentials`` replaces the static access token from settings, for hosts
    that keep an OAuth token fresh with RefreshingTokenProvider.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        entity_store = store or EntityStore.from_url(settings.database_url)
        await entity_store.migrate()

        trakt = client or TraktClient.from_settings(
            settings, credentials or StaticTokenProvider(settings.trakt_access_token)
        )
        service = SyncService(entity_store, trakt, max_concurrency=settings.max_concurrency)

        app.state.store = entity_store
        app.state.sync_service = service
        app.state.projector = UpNextProjector(entity_store)
        app.state.sync_task = None
        app.state.last_result = None
        app.state.last_error = None

        scheduler = create_scheduler()
        start_scheduler(scheduler)
        update_schedule(scheduler, service, settings.sync_interval_hours)
        yield
        # Shutdown
        stop_scheduler(scheduler)
        task = app.state.sync_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await entity_store.close()

    app = FastAPI(title="Upnext", lifespan=lifespan)
    app.include_router(api_router, prefix="/api", tags=["api"])

    @app.exception_handler(SyncError)
    async def sync_error_handler(request: Request, exc: SyncError):
        if isinstance(exc, (Unauthorized, NotAuthenticated)):
            status_code = 401
        elif isinstance(exc, NotFound):
            status_code = 404
        elif isinstance(exc, RateLimited):
            status_code = 429
        elif isinstance(exc, StoreUnavailable):
            status_code = 503
        else:
            status_code = 502
        logger.error(f"{request.url.path}: {type(exc).__name__}: {exc}")
        return JSONResponse({"error": str(exc), "type": type(exc).__name__}, status_code=status_code)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()

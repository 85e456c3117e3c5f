import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from upnext.services.sync import SyncService
from upnext.services.up_next import SortOption, UpNextItem, UpNextProjector, WatchedProgress

logger = logging.getLogger(__name__)

router = APIRouter()


class SyncRequest(BaseModel):
    show_ids: list[int] = []
    max_concurrency: Optional[int] = None


class SearchRequest(BaseModel):
    query: str
    limit: int = 10


def get_sync_service(request: Request) -> SyncService:
    return request.app.state.sync_service


def get_projector(request: Request) -> UpNextProjector:
    return request.app.state.projector


def format_date(value) -> Optional[str]:
    return value.isoformat() if value else None


def progress_to_dict(progress: Optional[WatchedProgress]) -> Optional[dict]:
    if progress is None:
        return None
    next_item = progress.next_item_to_watch
    return {
        "total_items": progress.total_items,
        "watched_items": progress.watched_items,
        "remaining_items": progress.remaining_items,
        "percentage": round(progress.progress_percentage, 1),
        "is_completed": progress.is_completed,
        "last_watched_at": format_date(progress.last_watched_at),
        "next": {
            "season": next_item.season,
            "episode": next_item.episode,
            "title": next_item.title,
            "aired_at": format_date(next_item.aired_at)
        } if next_item else None
    }


def item_to_dict(item: UpNextItem) -> dict:
    show, episode = item.show, item.next_episode
    return {
        "show": {
            "id": show.id,
            "trakt_id": show.trakt_id,
            "title": show.title,
            "year": show.year,
            "network": show.network,
            "poster_url": show.poster_url,
            "backdrop_url": show.backdrop_url
        },
        "episode": {
            "id": episode.id,
            "season": episode.season,
            "number": episode.number,
            "code": episode.code,
            "title": episode.title,
            "aired_at": format_date(episode.aired_at)
        },
        "progress": progress_to_dict(item.progress)
    }


@router.get("/up-next")
async def get_up_next(
    sort: SortOption = SortOption.AIR_DATE,
    projector: UpNextProjector = Depends(get_projector)
):
    """Next episode to watch for every show."""
    items = await projector.compute_up_next(sort=sort)
    return [item_to_dict(item) for item in items]


@router.get("/progress/{show_id}")
async def get_show_progress(show_id: int, projector: UpNextProjector = Depends(get_projector)):
    """Watched progress for one show."""
    progress = await projector.progress_for_show(show_id)
    if progress is None:
        return JSONResponse({"error": "No aired episodes for this show"}, status_code=404)
    return progress_to_dict(progress)


@router.get("/stats")
async def get_stats(projector: UpNextProjector = Depends(get_projector)):
    """Library statistics."""
    stats = await projector.statistics()
    return {
        "total_shows": stats.total_shows,
        "total_episodes": stats.total_episodes,
        "watched_episodes": stats.watched_episodes,
        "episode_watched_percentage": round(stats.episode_watched_percentage, 1),
        "total_movies": stats.total_movies,
        "watched_movies": stats.watched_movies,
        "movie_watched_percentage": round(stats.movie_watched_percentage, 1)
    }


@router.get("/sync/status")
async def get_sync_status(request: Request, service: SyncService = Depends(get_sync_service)):
    """Current sync progress and the result of the last run."""
    last = request.app.state.last_result
    return {
        "progress": service.progress.to_dict(),
        "last_result": last.to_dict() if last else None,
        "last_error": request.app.state.last_error
    }


@router.post("/sync")
async def trigger_sync(
    body: SyncRequest,
    request: Request,
    service: SyncService = Depends(get_sync_service)
):
    """Start a sync in the background. No show ids means every show."""
    running = request.app.state.sync_task
    if (running is not None and not running.done()) or service.progress.is_running:
        return JSONResponse({"status": "running"}, status_code=409)

    async def run():
        if body.show_ids:
            result = await service.sync_shows(body.show_ids, body.max_concurrency)
        else:
            result = await service.sync_all_shows(body.max_concurrency)
        request.app.state.last_result = result

    def finished(task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background sync failed: {type(error).__name__}: {error}")
            request.app.state.last_error = f"{type(error).__name__}: {error}"

    request.app.state.last_error = None
    task = asyncio.create_task(run())
    task.add_done_callback(finished)
    request.app.state.sync_task = task
    return {"status": "started"}


@router.post("/shows/search")
async def search_shows(body: SearchRequest, service: SyncService = Depends(get_sync_service)):
    """Search Trakt and store the matching shows."""
    shows = await service.search_and_save_shows(body.query, body.limit)
    return [
        {"id": s.id, "trakt_id": s.trakt_id, "title": s.title, "year": s.year}
        for s in shows
    ]


@router.post("/movies/search")
async def search_movies(body: SearchRequest, service: SyncService = Depends(get_sync_service)):
    """Search Trakt and store the matching movies."""
    movies = await service.search_and_save_movies(body.query, body.limit)
    return [
        {"id": m.id, "trakt_id": m.trakt_id, "title": m.title, "year": m.year}
        for m in movies
    ]

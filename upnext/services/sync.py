import asyncio
import inspect
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional, Union

from upnext.errors import NotFound, StoreUnavailable
from upnext.models import Episode, Movie, Show
from upnext.progress import ProgressTracker, SyncPhase, SyncProgress
from upnext.reconciler import (
    EpisodeWatchStateChange, apply_watched_progress, reconcile_episode, reconcile_movie, reconcile_show
)
from upnext.schemas import EpisodeDTO, SearchResultDTO, ShowDTO
from upnext.services.trakt import TraktClient
from upnext.store import EntityKind, EntityStore, EpisodeFilter

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SyncProgress], Union[None, Awaitable[None]]]


@dataclass
class BatchResult:
    """Outcome of a multi-show sync, partial failures included."""
    total_shows: int
    success_count: int
    failed_shows: list[tuple[int, Exception]] = field(default_factory=list)
    total_episodes_synced: int = 0

    @property
    def failure_count(self) -> int:
        return len(self.failed_shows)

    @property
    def success_rate(self) -> float:
        if self.total_shows <= 0:
            return 0.0
        return self.success_count / self.total_shows * 100

    def to_dict(self) -> dict:
        return {
            "total_shows": self.total_shows,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "failed_shows": [
                {"show_id": show_id, "error": str(error), "type": type(error).__name__}
                for show_id, error in self.failed_shows
            ],
            "total_episodes_synced": self.total_episodes_synced
        }


@dataclass
class BatchImportResult:
    imported_shows: int = 0
    imported_movies: int = 0
    updated_shows: int = 0
    updated_movies: int = 0

    @property
    def total_imported(self) -> int:
        return self.imported_shows + self.imported_movies

    @property
    def total_updated(self) -> int:
        return self.updated_shows + self.updated_movies

    @property
    def total_processed(self) -> int:
        return self.total_imported + self.total_updated


@dataclass
class ShowSyncStats:
    total_episodes: int
    watched_episodes: int
    aired_episodes: int

    @property
    def watched_percentage(self) -> float:
        if self.aired_episodes <= 0:
            return 0.0
        return self.watched_episodes / self.aired_episodes * 100

    @property
    def unwatched_aired(self) -> int:
        return self.aired_episodes - self.watched_episodes


@dataclass
class _SharedRun:
    task: asyncio.Task
    waiters: int = 0
    abandoned: bool = False


class SyncService:
    """
    Drives synchronization between Trakt and the local store.

    Shows are synced concurrently, at most ``max_concurrency`` at a time.
    A failure in one show is recorded in the batch result and never stops
    the others; only a store that has gone away aborts the batch.
    """

    def __init__(
        self,
        store: EntityStore,
        client: TraktClient,
        max_concurrency: Optional[int] = None,
        tracker: Optional[ProgressTracker] = None
    ):
        self.store = store
        self.client = client
        self.max_concurrency = max_concurrency
        self.progress = tracker or ProgressTracker()
        # (operation, show id) -> running sync, shared by overlapping batches
        self._in_flight: dict[tuple[str, int], _SharedRun] = {}

    def _concurrency(self, requested: Optional[int]) -> int:
        limit = requested if requested is not None else self.max_concurrency
        if limit is None:
            limit = os.cpu_count() or 1
        if limit < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {limit}")
        return limit

    # Batch operations

    async def sync_shows(
        self,
        show_ids: Iterable[int],
        max_concurrency: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> BatchResult:
        """Sync seasons, episodes and watched progress for each show."""
        return await self._run_batch(
            "episodes", show_ids, self._sync_show_with_episodes, max_concurrency, on_progress
        )

    async def sync_all_shows(
        self,
        max_concurrency: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> BatchResult:
        """Sync every show in the store."""
        async with self.store.read() as session:
            show_ids = await self.store.fetch_show_ids(session)
        return await self.sync_shows(show_ids, max_concurrency, on_progress)

    async def sync_watched_status(
        self,
        show_ids: Iterable[int],
        max_concurrency: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> BatchResult:
        """Sync only watched progress for each show."""

        async def worker(show_id: int) -> int:
            await self.sync_watched_progress(show_id)
            return 0

        return await self._run_batch("progress", show_ids, worker, max_concurrency, on_progress)

    async def _run_batch(
        self,
        operation: str,
        show_ids: Iterable[int],
        worker: Callable[[int], Awaitable[int]],
        max_concurrency: Optional[int],
        on_progress: Optional[ProgressCallback]
    ) -> BatchResult:
        ids = list(dict.fromkeys(show_ids))
        total = len(ids)
        semaphore = asyncio.Semaphore(self._concurrency(max_concurrency))
        report_lock = asyncio.Lock()

        result = BatchResult(total_shows=total, success_count=0)
        completed = 0

        logger.info(f"Starting {operation} sync of {total} show(s)")
        self.progress.start(total)

        async def run(show_id: int):
            nonlocal completed
            error = None
            episodes = 0

            async with semaphore:
                try:
                    episodes = await self._deduplicated(operation, show_id, worker)
                except StoreUnavailable:
                    raise
                except Exception as e:
                    error = e
                    logger.error(f"Failed to sync show {show_id}: {type(e).__name__}: {e}")

            async with report_lock:
                completed += 1
                if error is None:
                    result.success_count += 1
                    result.total_episodes_synced += episodes
                else:
                    result.failed_shows.append((show_id, error))
                self.progress.update(show_id, error is None, episodes)

                if on_progress is not None:
                    try:
                        outcome = on_progress(SyncProgress(
                            current=completed,
                            total=total,
                            show_id=show_id,
                            phase=SyncPhase.COMPLETED,
                            error=error
                        ))
                        if inspect.isawaitable(outcome):
                            await outcome
                    except Exception as e:
                        logger.error(f"Progress callback failed for show {show_id}: {type(e).__name__}: {e}")

        tasks = [asyncio.create_task(run(show_id)) for show_id in ids]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        finally:
            self.progress.finish()

        logger.info(
            f"Sync complete: {result.success_count}/{total} shows, "
            f"{result.total_episodes_synced} episodes, {result.failure_count} failed"
        )
        return result

    async def _deduplicated(self, operation: str, show_id: int, worker: Callable[[int], Awaitable[int]]) -> int:
        """
        Join an identical sync already running instead of starting another.

        The shared task lives as long as some batch still waits for it, so a
        cancelled batch never takes the result away from one that joined.
        """
        key = (operation, show_id)
        run = self._in_flight.get(key)
        if run is None or run.abandoned:
            run = _SharedRun(asyncio.create_task(worker(show_id)))
            self._in_flight[key] = run
            run.task.add_done_callback(lambda _: self._forget(key, run))
        else:
            logger.debug(f"Show {show_id} is already syncing, joining it")

        run.waiters += 1
        try:
            return await asyncio.shield(run.task)
        finally:
            run.waiters -= 1
            if run.waiters == 0 and not run.task.done():
                run.abandoned = True
                run.task.cancel()
                # A season transaction already under way finishes first
                await asyncio.wait([run.task])

    def _forget(self, key: tuple[str, int], run: _SharedRun):
        if self._in_flight.get(key) is run:
            del self._in_flight[key]

    # Per-show work

    async def _get_show(self, show_id: int) -> Show:
        async with self.store.read() as session:
            show = await self.store.get(session, EntityKind.SHOW, show_id)
        if show is None:
            raise NotFound(f"Show {show_id} not found in database")
        return show

    async def _sync_show_with_episodes(self, show_id: int) -> int:
        show = await self._get_show(show_id)
        total = await self._sync_seasons(show)

        self.progress.set_phase(show_id, SyncPhase.SYNCING_PROGRESS)
        await self._sync_progress(show)

        logger.info(f"Synced {total} episodes for {show.title}")
        return total

    async def _sync_seasons(self, show: Show) -> int:
        self.progress.set_phase(show.id, SyncPhase.FETCHING_SEASONS)
        seasons = await self.client.get_seasons(show.trakt_id)

        total = 0
        for season in seasons:
            if season.number <= 0:
                continue  # specials

            self.progress.set_phase(show.id, SyncPhase.SYNCING_EPISODES, season.number)
            logger.debug(f"Syncing {show.title} season {season.number}")
            episodes = await self.client.get_episodes(show.trakt_id, season.number)

            # Once the season's transaction has started it runs to the end,
            # even if the batch gets cancelled meanwhile
            save = asyncio.ensure_future(self._save_episodes(show.id, episodes))
            try:
                await asyncio.shield(save)
            except asyncio.CancelledError:
                await save
                raise

            total += len(episodes)
        return total

    async def _save_episodes(self, show_id: int, episodes: list[EpisodeDTO]) -> int:
        async with self.store.transaction() as session:
            for dto in episodes:
                existing = await self.store.find_by_external_id(session, EntityKind.EPISODE, dto.ids.trakt)
                if existing is None:
                    existing = await self.store.find_episode(session, show_id, dto.season, dto.number)
                await self.store.save(session, reconcile_episode(existing, dto, show_id))
        return len(episodes)

    async def _sync_progress(self, show: Show) -> list[EpisodeWatchStateChange]:
        progress = await self.client.get_watched_progress(show.trakt_id)
        async with self.store.transaction() as session:
            changes = await apply_watched_progress(session, self.store, show.id, progress)
        if changes:
            logger.info(f"Updated watched state of {len(changes)} episode(s) for {show.title}")
        return changes

    async def sync_watched_progress(self, show_id: int) -> list[EpisodeWatchStateChange]:
        """Sync watched progress for one show."""
        show = await self._get_show(show_id)
        self.progress.set_phase(show_id, SyncPhase.SYNCING_PROGRESS)
        return await self._sync_progress(show)

    async def sync_complete_show(self, show_id: int) -> Show:
        """Refresh a show's own metadata along with all its episodes."""
        show = await self._get_show(show_id)
        logger.info(f"Syncing show: {show.title}")

        detailed = await self.client.get_show(show.trakt_id)
        total = await self._sync_seasons(show)

        async with self.store.transaction() as session:
            existing = await self.store.get(session, EntityKind.SHOW, show_id)
            if existing is None:
                raise NotFound(f"Show {show_id} was removed during sync")
            updated = await self.store.update(session, reconcile_show(existing, detailed))

        logger.info(f"Synced {total} episodes for {updated.title}")
        return updated

    # Imports

    async def _save_shows(self, shows: list[ShowDTO], result: Optional[BatchImportResult] = None) -> list[Show]:
        saved = []
        async with self.store.transaction() as session:
            for dto in shows:
                existing = await self.store.find_by_external_id(session, EntityKind.SHOW, dto.ids.trakt)
                show = await self.store.save(session, reconcile_show(existing, dto))
                saved.append(show)
                if result is not None:
                    if existing is None:
                        result.imported_shows += 1
                    else:
                        result.updated_shows += 1
        return saved

    async def search_and_save_shows(self, query: str, limit: int = 10) -> list[Show]:
        """Search Trakt for shows and store every result."""
        logger.info(f"Searching for: {query}")
        shows = await self.client.search_shows(query, limit)
        saved = await self._save_shows(shows)
        logger.info(f"Saved {len(saved)} shows to database")
        return saved

    async def search_and_save_movies(self, query: str, limit: int = 10) -> list[Movie]:
        """Search Trakt for movies and store every result."""
        logger.info(f"Searching movies for: {query}")
        movies = await self.client.search_movies(query, limit)
        saved = []
        async with self.store.transaction() as session:
            for dto in movies:
                existing = await self.store.find_by_external_id(session, EntityKind.MOVIE, dto.ids.trakt)
                saved.append(await self.store.save(session, reconcile_movie(existing, dto)))
        logger.info(f"Saved {len(saved)} movies to database")
        return saved

    async def import_search_results(self, results: list[SearchResultDTO]) -> BatchImportResult:
        """Store the shows and movies of mixed search results in one transaction."""
        result = BatchImportResult()
        shows = [r.show for r in results if r.show is not None]
        movies = [r.movie for r in results if r.movie is not None]

        async with self.store.transaction() as session:
            for dto in shows:
                existing = await self.store.find_by_external_id(session, EntityKind.SHOW, dto.ids.trakt)
                await self.store.save(session, reconcile_show(existing, dto))
                if existing is None:
                    result.imported_shows += 1
                else:
                    result.updated_shows += 1

            for dto in movies:
                existing = await self.store.find_by_external_id(session, EntityKind.MOVIE, dto.ids.trakt)
                await self.store.save(session, reconcile_movie(existing, dto))
                if existing is None:
                    result.imported_movies += 1
                else:
                    result.updated_movies += 1

        return result

    async def import_watched_shows(
        self,
        max_concurrency: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> BatchResult:
        """Store every show the user has watched on Trakt, then sync them."""
        shows = await self.client.get_all_watched_shows()
        saved = await self._save_shows(shows)
        logger.info(f"Imported {len(saved)} watched shows")
        return await self.sync_shows([s.id for s in saved], max_concurrency, on_progress)

    # Local edits

    async def mark_episodes_as_watched(
        self,
        episode_ids: Iterable[int],
        watched_at: Optional[datetime] = None
    ) -> int:
        """Mark episodes watched in a single transaction. Unknown ids are skipped."""
        watched_at = watched_at or datetime.now(timezone.utc)
        updated = 0
        async with self.store.transaction() as session:
            for episode_id in episode_ids:
                episode = await self.store.get(session, EntityKind.EPISODE, episode_id)
                if episode is not None:
                    episode.watched_at = watched_at
                    updated += 1
        return updated

    async def _mark_unwatched_episodes(
        self,
        show_id: int,
        include: Callable[[Episode], bool],
        watched_at: Optional[datetime]
    ) -> int:
        # Episodes already watched keep their original time
        watched_at = watched_at or datetime.now(timezone.utc)
        async with self.store.transaction() as session:
            episodes = await self.store.fetch_episodes(session, show_id, EpisodeFilter(watched=False))
            marked = [e for e in episodes if include(e)]
            for episode in marked:
                episode.watched_at = watched_at
        return len(marked)

    async def mark_episodes_watched_up_to(
        self,
        show_id: int,
        season: int,
        number: int,
        watched_at: Optional[datetime] = None
    ) -> int:
        """Mark every episode up to and including season/number as watched."""
        updated = await self._mark_unwatched_episodes(
            show_id,
            lambda e: e.season < season or (e.season == season and e.number <= number),
            watched_at
        )
        logger.info(f"Marked {updated} episode(s) of show {show_id} watched up to S{season:02d}E{number:02d}")
        return updated

    async def mark_season_as_watched(self, show_id: int, season: int, watched_at: Optional[datetime] = None) -> int:
        return await self._mark_unwatched_episodes(show_id, lambda e: e.season == season, watched_at)

    async def mark_show_as_watched(self, show_id: int, watched_at: Optional[datetime] = None) -> int:
        return await self._mark_unwatched_episodes(show_id, lambda e: True, watched_at)

    async def _set_movie_watched_at(self, movie_id: int, watched_at: Optional[datetime]) -> Movie:
        async with self.store.transaction() as session:
            movie = await self.store.get(session, EntityKind.MOVIE, movie_id)
            if movie is None:
                raise NotFound(f"Movie {movie_id} not found in database")
            movie.watched_at = watched_at
        return movie

    async def mark_movie_as_watched(self, movie_id: int, watched_at: Optional[datetime] = None) -> Movie:
        return await self._set_movie_watched_at(movie_id, watched_at or datetime.now(timezone.utc))

    async def mark_movie_as_unwatched(self, movie_id: int) -> Movie:
        return await self._set_movie_watched_at(movie_id, None)

    async def get_sync_stats(self, show_id: int, now: Optional[datetime] = None) -> ShowSyncStats:
        now = now or datetime.now(timezone.utc)
        async with self.store.read() as session:
            return ShowSyncStats(
                total_episodes=await self.store.count_episodes(session, show_id),
                watched_episodes=await self.store.count_episodes(session, show_id, watched=True),
                aired_episodes=await self.store.count_episodes(session, show_id, aired_before=now)
            )

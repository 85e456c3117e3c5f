import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from upnext.models import Episode, Show
from upnext.store import EntityKind, EntityStore, EpisodeFilter

logger = logging.getLogger(__name__)


class MediaType(str, Enum):
    SHOW = "show"
    MOVIE = "movie"


class SortOption(str, Enum):
    AIR_DATE = "air_date"
    SHOW_TITLE = "show_title"
    EPISODE_NUMBER = "episode_number"
    PROGRESS = "progress"


@dataclass(frozen=True)
class NextItem:
    season: Optional[int]
    episode: Optional[int]
    title: Optional[str]
    aired_at: Optional[datetime]


@dataclass(frozen=True)
class WatchedProgress:
    media_type: MediaType
    media_id: int
    total_items: int
    watched_items: int
    last_watched_at: Optional[datetime]
    next_item_to_watch: Optional[NextItem]

    @property
    def progress_percentage(self) -> float:
        if self.total_items <= 0:
            return 0.0
        return self.watched_items / self.total_items * 100

    @property
    def is_completed(self) -> bool:
        return self.total_items > 0 and self.watched_items >= self.total_items

    @property
    def remaining_items(self) -> int:
        return max(0, self.total_items - self.watched_items)


@dataclass(eq=False)
class UpNextItem:
    """A show paired with the one episode to watch next. Identity is (show id, episode id)."""
    show: Show
    next_episode: Episode
    progress: Optional[WatchedProgress] = None

    @property
    def key(self) -> tuple[int, int]:
        return (self.show.id, self.next_episode.id)

    def __eq__(self, other):
        if not isinstance(other, UpNextItem):
            return NotImplemented
        return self.key == other.key

    def __hash__(self):
        return hash(self.key)

    def is_aired(self, now: Optional[datetime] = None) -> bool:
        if self.next_episode.aired_at is None:
            return False
        return self.next_episode.aired_at <= (now or datetime.now(timezone.utc))

    def days_until_air(self, now: Optional[datetime] = None) -> Optional[int]:
        if self.next_episode.aired_at is None:
            return None
        return (self.next_episode.aired_at - (now or datetime.now(timezone.utc))).days


@dataclass(frozen=True)
class LibraryStatistics:
    total_shows: int
    total_episodes: int
    watched_episodes: int
    total_movies: int
    watched_movies: int

    @property
    def episode_watched_percentage(self) -> float:
        if self.total_episodes <= 0:
            return 0.0
        return self.watched_episodes / self.total_episodes * 100

    @property
    def movie_watched_percentage(self) -> float:
        if self.total_movies <= 0:
            return 0.0
        return self.watched_movies / self.total_movies * 100


def select_next_episode(candidates: list[Episode], last_watched: Optional[Episode]) -> Optional[Episode]:
    """
    Pick the episode to watch next.

    ``candidates`` are the aired, unwatched episodes in (season, number)
    order. The first one after the last watched episode wins; when nothing
    comes after it, the earliest candidate is returned so a show with an
    unwatched gap still surfaces something.
    """
    if not candidates:
        return None
    if last_watched is None:
        return candidates[0]

    position = (last_watched.season, last_watched.number)
    for episode in candidates:
        if (episode.season, episode.number) > position:
            return episode
    return candidates[0]


def sort_items(items: list[UpNextItem], option: SortOption = SortOption.AIR_DATE) -> list[UpNextItem]:
    """Resort up-next items. Sorts are stable."""
    if option is SortOption.AIR_DATE:
        return sorted(items, key=lambda i: (
            i.next_episode.aired_at is None,
            i.next_episode.aired_at or datetime.min.replace(tzinfo=timezone.utc)
        ))
    if option is SortOption.SHOW_TITLE:
        return sorted(items, key=lambda i: i.show.title.casefold())
    if option is SortOption.EPISODE_NUMBER:
        return sorted(items, key=lambda i: (
            i.next_episode.season,
            i.next_episode.number,
            i.show.title.casefold()
        ))
    if option is SortOption.PROGRESS:
        # No progress record counts as 0% and lands after anything started
        return sorted(items, key=lambda i: -(i.progress.progress_percentage if i.progress else 0.0))
    raise ValueError(f"Unknown sort option: {option}")


class UpNextProjector:
    """Read-only projections over the store: up next, progress, statistics."""

    def __init__(self, store: EntityStore):
        self.store = store

    async def _next_episode(self, session: AsyncSession, show_id: int, now: datetime) -> Optional[Episode]:
        candidates = await self.store.fetch_episodes(
            session, show_id, EpisodeFilter(aired_before=now, watched=False)
        )
        if not candidates:
            return None
        last_watched = await self.store.fetch_episodes(
            session, show_id, EpisodeFilter(watched=True, descending=True, limit=1)
        )
        return select_next_episode(candidates, last_watched[0] if last_watched else None)

    async def calculate_progress(
        self,
        session: AsyncSession,
        show_id: int,
        now: Optional[datetime] = None,
        next_episode: Optional[Episode] = None
    ) -> Optional[WatchedProgress]:
        """Watched progress of a show, None when nothing has aired yet."""
        now = now or datetime.now(timezone.utc)

        total = await self.store.count_episodes(session, show_id, aired_before=now)
        if total == 0:
            return None

        watched = await self.store.count_episodes(session, show_id, watched=True)
        last_watched_at = await self.store.last_watched_at(session, show_id)

        if next_episode is None:
            next_episode = await self._next_episode(session, show_id, now)
        next_item = None
        if next_episode is not None:
            next_item = NextItem(
                season=next_episode.season,
                episode=next_episode.number,
                title=next_episode.title,
                aired_at=next_episode.aired_at
            )

        return WatchedProgress(
            media_type=MediaType.SHOW,
            media_id=show_id,
            total_items=total,
            watched_items=watched,
            last_watched_at=last_watched_at,
            next_item_to_watch=next_item
        )

    async def compute_up_next(
        self,
        now: Optional[datetime] = None,
        sort: SortOption = SortOption.AIR_DATE
    ) -> list[UpNextItem]:
        """One item per show that has an aired, unwatched episode."""
        now = now or datetime.now(timezone.utc)
        items = []

        async with self.store.read() as session:
            for show in await self.store.fetch_shows(session):
                next_episode = await self._next_episode(session, show.id, now)
                if next_episode is None:
                    continue
                progress = await self.calculate_progress(session, show.id, now, next_episode)
                items.append(UpNextItem(show=show, next_episode=next_episode, progress=progress))

        logger.debug(f"Computed {len(items)} up next item(s)")
        return sort_items(items, sort)

    async def progress_for_show(self, show_id: int, now: Optional[datetime] = None) -> Optional[WatchedProgress]:
        async with self.store.read() as session:
            return await self.calculate_progress(session, show_id, now)

    async def progress_for_all_shows(self, now: Optional[datetime] = None) -> list[WatchedProgress]:
        results = []
        async with self.store.read() as session:
            for show_id in await self.store.fetch_show_ids(session):
                progress = await self.calculate_progress(session, show_id, now)
                if progress is not None:
                    results.append(progress)
        return results

    async def statistics(self) -> LibraryStatistics:
        async with self.store.read() as session:
            return LibraryStatistics(
                total_shows=await self.store.count(session, EntityKind.SHOW),
                total_episodes=await self.store.count(session, EntityKind.EPISODE),
                watched_episodes=await self.store.count(session, EntityKind.EPISODE, watched=True),
                total_movies=await self.store.count(session, EntityKind.MOVIE),
                watched_movies=await self.store.count(session, EntityKind.MOVIE, watched=True)
            )

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import AsyncIterator, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from upnext.database import create_engine, create_session_factory
from upnext.errors import ConstraintViolation, StoreUnavailable
from upnext.migrations import run_migrations
from upnext.models import Episode, Movie, Show

logger = logging.getLogger(__name__)

Entity = Union[Show, Episode, Movie]


class EntityKind(str, Enum):
    SHOW = "show"
    EPISODE = "episode"
    MOVIE = "movie"

    @property
    def model(self):
        return {
            EntityKind.SHOW: Show,
            EntityKind.EPISODE: Episode,
            EntityKind.MOVIE: Movie,
        }[self]


@dataclass
class EpisodeFilter:
    """Filters for fetch_episodes. None means "don't filter"."""
    aired_before: Optional[datetime] = None
    watched: Optional[bool] = None
    descending: bool = False
    limit: Optional[int] = None


class EntityStore:
    """
    Local persistent store for shows, episodes and movies.

    Every session handed out goes through one lock, so the store behaves as a
    single queue: writes from concurrent show syncs are serialized and never
    share a transaction.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = create_session_factory(engine)
        self._lock = asyncio.Lock()
        self._closed = False

    @classmethod
    def from_url(cls, database_url: str) -> "EntityStore":
        return cls(create_engine(database_url))

    async def migrate(self) -> list[str]:
        """Bring the schema up to date."""
        self._ensure_open()
        try:
            async with self.engine.begin() as conn:
                return await run_migrations(conn)
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailable(f"Migration failed: {e}") from e

    async def close(self):
        self._closed = True
        await self.engine.dispose()

    def _ensure_open(self):
        if self._closed:
            raise StoreUnavailable("Store is closed")

    # Transaction boundary

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Session inside one transaction: commit on success, roll back on error."""
        self._ensure_open()
        async with self._lock:
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        yield session
            except IntegrityError as e:
                raise ConstraintViolation(str(e.orig)) from e
            except (OperationalError, InterfaceError) as e:
                raise StoreUnavailable(str(e.orig)) from e

    @asynccontextmanager
    async def read(self) -> AsyncIterator[AsyncSession]:
        """Session for read-only work. Nothing is committed."""
        self._ensure_open()
        async with self._lock:
            try:
                async with self.session_factory() as session:
                    yield session
            except (OperationalError, InterfaceError) as e:
                raise StoreUnavailable(str(e.orig)) from e

    # Lookups

    async def get(self, session: AsyncSession, kind: EntityKind, local_id: int) -> Optional[Entity]:
        return await session.get(kind.model, local_id)

    async def find_by_external_id(
        self,
        session: AsyncSession,
        kind: EntityKind,
        external_id: int
    ) -> Optional[Entity]:
        model = kind.model
        result = await session.execute(
            select(model).where(model.trakt_id == external_id)
        )
        return result.scalar_one_or_none()

    async def find_episode(
        self,
        session: AsyncSession,
        show_id: int,
        season: int,
        number: int
    ) -> Optional[Episode]:
        result = await session.execute(
            select(Episode).where(
                Episode.show_id == show_id,
                Episode.season == season,
                Episode.number == number
            )
        )
        return result.scalar_one_or_none()

    async def fetch_shows(self, session: AsyncSession) -> list[Show]:
        result = await session.execute(select(Show).order_by(Show.title, Show.id))
        return list(result.scalars().all())

    async def fetch_show_ids(self, session: AsyncSession) -> list[int]:
        result = await session.execute(select(Show.id).order_by(Show.id))
        return list(result.scalars().all())

    async def fetch_episodes(
        self,
        session: AsyncSession,
        show_id: int,
        filters: Optional[EpisodeFilter] = None
    ) -> list[Episode]:
        filters = filters or EpisodeFilter()
        query = select(Episode).where(Episode.show_id == show_id)

        if filters.aired_before is not None:
            query = query.where(
                Episode.aired_at.is_not(None),
                Episode.aired_at <= filters.aired_before
            )
        if filters.watched is True:
            query = query.where(Episode.watched_at.is_not(None))
        elif filters.watched is False:
            query = query.where(Episode.watched_at.is_(None))

        if filters.descending:
            query = query.order_by(Episode.season.desc(), Episode.number.desc())
        else:
            query = query.order_by(Episode.season, Episode.number)

        if filters.limit is not None:
            query = query.limit(filters.limit)

        result = await session.execute(query)
        return list(result.scalars().all())

    async def fetch_movies(self, session: AsyncSession, watched: Optional[bool] = None) -> list[Movie]:
        query = select(Movie)
        if watched is True:
            query = query.where(Movie.watched_at.is_not(None)).order_by(Movie.watched_at.desc())
        elif watched is False:
            query = query.where(Movie.watched_at.is_(None)).order_by(Movie.title)
        else:
            query = query.order_by(Movie.title)
        result = await session.execute(query)
        return list(result.scalars().all())

    async def count(self, session: AsyncSession, kind: EntityKind, watched: Optional[bool] = None) -> int:
        model = kind.model
        query = select(func.count(model.id))
        if watched is not None and kind is not EntityKind.SHOW:
            column = model.watched_at
            query = query.where(column.is_not(None) if watched else column.is_(None))
        result = await session.execute(query)
        return result.scalar() or 0

    async def count_episodes(
        self,
        session: AsyncSession,
        show_id: int,
        watched: Optional[bool] = None,
        aired_before: Optional[datetime] = None
    ) -> int:
        query = select(func.count(Episode.id)).where(Episode.show_id == show_id)
        if watched is True:
            query = query.where(Episode.watched_at.is_not(None))
        elif watched is False:
            query = query.where(Episode.watched_at.is_(None))
        if aired_before is not None:
            query = query.where(
                Episode.aired_at.is_not(None),
                Episode.aired_at <= aired_before
            )
        result = await session.execute(query)
        return result.scalar() or 0

    async def last_watched_at(self, session: AsyncSession, show_id: int) -> Optional[datetime]:
        result = await session.execute(
            select(Episode.watched_at)
            .where(Episode.show_id == show_id, Episode.watched_at.is_not(None))
            .order_by(Episode.watched_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    # Writes

    async def insert(self, session: AsyncSession, entity: Entity) -> int:
        """Add a new row and return its local id."""
        session.add(entity)
        try:
            await session.flush()
        except IntegrityError as e:
            raise ConstraintViolation(
                f"Insert of {type(entity).__name__} trakt_id={entity.trakt_id} failed: {e.orig}"
            ) from e
        return entity.id

    async def update(self, session: AsyncSession, entity: Entity) -> Entity:
        """Write an entity that carries its local id over the stored row."""
        if entity.id is None:
            raise ValueError(f"Cannot update {type(entity).__name__} without an id")
        merged = await session.merge(entity)
        try:
            await session.flush()
        except IntegrityError as e:
            raise ConstraintViolation(
                f"Update of {type(entity).__name__} id={entity.id} failed: {e.orig}"
            ) from e
        return merged

    async def save(self, session: AsyncSession, entity: Entity) -> Entity:
        """Insert when the entity has no id yet, update otherwise."""
        if entity.id is None:
            await self.insert(session, entity)
            return entity
        return await self.update(session, entity)

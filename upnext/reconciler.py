"""
Merge rules between remote payloads and local rows.

Each function takes the stored record (or None) and the incoming payload and
returns the record to write. Locally owned fields are carried over from the
stored record instead of being overwritten with whatever the remote omitted:
cached image URLs on shows and movies, and watched_at everywhere except the
progress sync.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from upnext.models import Episode, Movie, Show
from upnext.schemas import EpisodeDTO, MovieDTO, ProgressDTO, ShowDTO


@dataclass(frozen=True)
class EpisodeWatchStateChange:
    episode_id: int
    season: int
    number: int
    previous: Optional[datetime]
    current: Optional[datetime]

    @property
    def marked_watched(self) -> bool:
        return self.current is not None


def parse_instant(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime, None if unusable."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def reconcile_show(existing: Optional[Show], incoming: ShowDTO) -> Show:
    show = Show(
        trakt_id=incoming.ids.trakt,
        title=incoming.title,
        year=incoming.year,
        overview=incoming.overview,
        runtime=incoming.runtime,
        status=incoming.status,
        network=incoming.network,
        updated_at=parse_instant(incoming.updated_at),
        poster_url=incoming.poster_url,
        backdrop_url=incoming.backdrop_url,
        tmdb_id=incoming.ids.tmdb
    )
    if existing is None:
        return show

    show.id = existing.id
    # Responses fetched without the images extension carry no URLs
    show.poster_url = incoming.poster_url or existing.poster_url
    show.backdrop_url = incoming.backdrop_url or existing.backdrop_url
    if show.tmdb_id is None:
        show.tmdb_id = existing.tmdb_id
    return show


def reconcile_movie(existing: Optional[Movie], incoming: MovieDTO) -> Movie:
    movie = Movie(
        trakt_id=incoming.ids.trakt,
        title=incoming.title,
        year=incoming.year,
        overview=incoming.overview,
        runtime=incoming.runtime,
        released=parse_instant(incoming.released),
        certification=incoming.certification,
        tagline=incoming.tagline,
        watched_at=None,
        updated_at=parse_instant(incoming.updated_at),
        poster_url=incoming.poster_url,
        backdrop_url=incoming.backdrop_url,
        tmdb_id=incoming.ids.tmdb
    )
    if existing is None:
        return movie

    movie.id = existing.id
    movie.watched_at = existing.watched_at
    movie.poster_url = incoming.poster_url or existing.poster_url
    movie.backdrop_url = incoming.backdrop_url or existing.backdrop_url
    if movie.tmdb_id is None:
        movie.tmdb_id = existing.tmdb_id
    if movie.certification is None:
        movie.certification = existing.certification
    if movie.tagline is None:
        movie.tagline = existing.tagline
    return movie


def reconcile_episode(existing: Optional[Episode], incoming: EpisodeDTO, show_id: int) -> Episode:
    episode = Episode(
        show_id=show_id,
        trakt_id=incoming.ids.trakt,
        season=incoming.season,
        number=incoming.number,
        title=incoming.title,
        overview=incoming.overview,
        runtime=incoming.runtime,
        aired_at=parse_instant(incoming.first_aired),
        watched_at=None
    )
    if existing is None:
        return episode

    episode.id = existing.id
    # Metadata sync never touches watched state
    episode.watched_at = existing.watched_at
    return episode


async def apply_watched_progress(
    session: AsyncSession,
    store,
    show_id: int,
    progress: ProgressDTO,
    now: Optional[datetime] = None
) -> list[EpisodeWatchStateChange]:
    """
    Write the remote watched state onto the show's local episodes.

    Completed episodes take the reported watch time, or ``now`` when the
    remote sent none. Episodes reported as not completed are cleared.
    Episodes missing locally are skipped; this path never creates rows.
    Only episodes whose watched_at actually changed are returned.
    """
    now = now or datetime.now(timezone.utc)

    episodes = await store.fetch_episodes(session, show_id)
    by_key = {(e.season, e.number): e for e in episodes}

    changes = []
    for season in progress.seasons or []:
        for episode_progress in season.episodes or []:
            episode = by_key.get((season.number, episode_progress.number))
            if episode is None:
                continue

            if episode_progress.completed:
                watched_at = parse_instant(episode_progress.last_watched_at) or now
            else:
                watched_at = None

            if episode.watched_at != watched_at:
                changes.append(EpisodeWatchStateChange(
                    episode_id=episode.id,
                    season=episode.season,
                    number=episode.number,
                    previous=episode.watched_at,
                    current=watched_at
                ))
                episode.watched_at = watched_at

    if changes:
        await session.flush()
    return changes

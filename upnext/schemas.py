"""
Typed shapes of the remote API payloads.

Only the fields the sync engine consumes are declared; anything else in a
response is ignored. Dates stay as the raw ISO strings the API sends and are
parsed by the reconciler, so one malformed date never fails a whole payload.
"""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class DTO(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Ids(DTO):
    trakt: int
    slug: Optional[str] = None
    imdb: Optional[str] = None
    tmdb: Optional[int] = None
    tvdb: Optional[int] = None


class ImageSet(DTO):
    full: Optional[str] = None
    medium: Optional[str] = None
    thumb: Optional[str] = None

    @property
    def best(self) -> Optional[str]:
        return self.medium or self.full or self.thumb


def _coerce_image_set(value: Any) -> Any:
    # The API has returned each slot as an object, a list of objects and a
    # list of bare URL strings. The first entry of a list wins.
    if isinstance(value, list):
        if not value:
            return None
        first = value[0]
        if isinstance(first, str):
            return {"full": first, "medium": first, "thumb": first}
        return first
    return value


class Images(DTO):
    fanart: Optional[ImageSet] = None
    poster: Optional[ImageSet] = None
    logo: Optional[ImageSet] = None
    clearart: Optional[ImageSet] = None
    banner: Optional[ImageSet] = None
    thumb: Optional[ImageSet] = None

    @field_validator("fanart", "poster", "logo", "clearart", "banner", "thumb", mode="before")
    @classmethod
    def flexible_image_set(cls, value):
        return _coerce_image_set(value)


class MediaDTO(DTO):
    ids: Ids
    title: str
    year: Optional[int] = None
    overview: Optional[str] = None
    runtime: Optional[int] = None
    updated_at: Optional[str] = None
    images: Optional[Images] = None

    @property
    def poster_url(self) -> Optional[str]:
        if self.images and self.images.poster:
            return self.images.poster.medium or self.images.poster.full
        return None

    @property
    def backdrop_url(self) -> Optional[str]:
        if self.images and self.images.fanart:
            return self.images.fanart.medium or self.images.fanart.full
        return None


class ShowDTO(MediaDTO):
    network: Optional[str] = None
    status: Optional[str] = None
    aired_episodes: Optional[int] = None


class MovieDTO(MediaDTO):
    released: Optional[str] = None
    certification: Optional[str] = None
    tagline: Optional[str] = None


class EpisodeDTO(DTO):
    ids: Ids
    season: int
    number: int
    title: Optional[str] = None
    overview: Optional[str] = None
    runtime: Optional[int] = None
    first_aired: Optional[str] = None
    updated_at: Optional[str] = None


class SeasonDTO(DTO):
    ids: Optional[Ids] = None
    number: int
    episode_count: Optional[int] = None
    aired_episodes: Optional[int] = None
    episodes: Optional[list[EpisodeDTO]] = None


class EpisodeProgressDTO(DTO):
    number: int
    completed: bool
    last_watched_at: Optional[str] = None


class SeasonProgressDTO(DTO):
    number: int
    aired: int = 0
    completed: int = 0
    episodes: Optional[list[EpisodeProgressDTO]] = None


class ProgressDTO(DTO):
    aired: int = 0
    completed: int = 0
    last_watched_at: Optional[str] = None
    reset_at: Optional[str] = None
    seasons: Optional[list[SeasonProgressDTO]] = None
    next_episode: Optional[EpisodeDTO] = None
    last_episode: Optional[EpisodeDTO] = None


class SearchResultDTO(DTO):
    type: str
    score: Optional[float] = None
    show: Optional[ShowDTO] = None
    movie: Optional[MovieDTO] = None


class WatchedShowDTO(DTO):
    plays: Optional[int] = None
    last_watched_at: Optional[str] = None
    show: ShowDTO

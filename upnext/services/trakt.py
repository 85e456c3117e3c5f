import asyncio
import logging
from typing import Any, Optional, TypeVar

import httpx
from pydantic import TypeAdapter, ValidationError

from upnext.errors import DecodingError, HttpError, NetworkError, RateLimited, Unauthorized
from upnext.schemas import (
    EpisodeDTO, MovieDTO, ProgressDTO, SearchResultDTO, SeasonDTO, ShowDTO, WatchedShowDTO
)
from upnext.services.credentials import CredentialProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TraktClient:
    """Client for the Trakt API. Every call makes sure the token is valid first."""

    def __init__(
        self,
        base_url: str,
        client_id: str,
        credentials: CredentialProvider,
        api_version: str = "2",
        timeout: float = 30.0,
        rate_limit_retry_delay: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.timeout = timeout
        self.rate_limit_retry_delay = rate_limit_retry_delay
        self.transport = transport
        self.headers = {
            "Content-Type": "application/json",
            "trakt-api-version": api_version,
            "trakt-api-key": client_id
        }

    @classmethod
    def from_settings(cls, settings, credentials: CredentialProvider, **kwargs) -> "TraktClient":
        return cls(
            settings.trakt_base_url,
            settings.trakt_client_id,
            credentials,
            api_version=settings.trakt_api_version,
            timeout=settings.request_timeout,
            rate_limit_retry_delay=settings.rate_limit_retry_delay,
            **kwargs
        )

    async def _send(self, method: str, path: str, params: Optional[dict] = None, json: Any = None) -> httpx.Response:
        token = await self.credentials.get_valid_access_token()
        headers = {**self.headers, "Authorization": f"Bearer {token}"}

        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                return await client.request(
                    method,
                    f"{self.base_url}{path}",
                    params=params,
                    json=json,
                    headers=headers,
                    timeout=self.timeout
                )
        except httpx.HTTPError as e:
            raise NetworkError(f"Network error: {e}") from e

    async def _request(self, method: str, path: str, params: Optional[dict] = None, json: Any = None) -> httpx.Response:
        """Send a request, waiting once and retrying on a 429."""
        response = await self._send(method, path, params, json)

        if response.status_code == 429:
            logger.warning(
                f"Rate limited on {path}, retrying in {self.rate_limit_retry_delay}s"
            )
            await asyncio.sleep(self.rate_limit_retry_delay)
            response = await self._send(method, path, params, json)

        remaining = response.headers.get("X-RateLimit-Remaining")
        limit = response.headers.get("X-RateLimit-Limit")
        if remaining and limit:
            logger.debug(f"Rate limit: {remaining}/{limit}")

        if response.status_code == 401:
            raise Unauthorized("Unauthorized - please login again")
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimited(float(retry_after) if retry_after and retry_after.isdigit() else None)
        if not response.is_success:
            raise HttpError(response.status_code, path)

        return response

    async def _get(self, type_: type[T], path: str, params: Optional[dict] = None) -> T:
        response = await self._request("GET", path, params=params)
        return self._decode(type_, response)

    @staticmethod
    def _decode(type_: type[T], response: httpx.Response) -> T:
        try:
            return TypeAdapter(type_).validate_python(response.json())
        except (ValidationError, ValueError) as e:
            raise DecodingError(f"Failed to decode {response.request.url.path}: {e}") from e

    async def test_connection(self) -> dict:
        """Check the token by fetching the user's settings."""
        response = await self._request("GET", "/users/settings")
        return response.json()

    async def search_shows(self, query: str, limit: int = 10) -> list[ShowDTO]:
        """Search for shows."""
        results = await self._get(
            list[SearchResultDTO],
            "/search/show",
            params={"query": query, "limit": limit, "extended": "full,images"}
        )
        return [r.show for r in results if r.show is not None]

    async def search_movies(self, query: str, limit: int = 10) -> list[MovieDTO]:
        """Search for movies."""
        results = await self._get(
            list[SearchResultDTO],
            "/search/movie",
            params={"query": query, "limit": limit, "extended": "full,images"}
        )
        return [r.movie for r in results if r.movie is not None]

    async def get_show(self, external_id: int) -> ShowDTO:
        """Get detailed information about a show."""
        return await self._get(ShowDTO, f"/shows/{external_id}", params={"extended": "full,images"})

    async def get_seasons(self, external_id: int) -> list[SeasonDTO]:
        """Get all seasons of a show, in API order."""
        return await self._get(list[SeasonDTO], f"/shows/{external_id}/seasons", params={"extended": "full"})

    async def get_episodes(self, external_id: int, season: int) -> list[EpisodeDTO]:
        """Get all episodes of one season."""
        response = await self._request(
            "GET",
            f"/shows/{external_id}/seasons/{season}",
            params={"extended": "full"}
        )
        # A plain episode list, though some responses wrap it in a season object
        try:
            payload = response.json()
        except ValueError as e:
            raise DecodingError(f"Failed to decode season {season} of {external_id}: {e}") from e
        if isinstance(payload, dict):
            season_data = self._decode(SeasonDTO, response)
            return season_data.episodes or []
        return self._decode(list[EpisodeDTO], response)

    async def get_watched_progress(self, external_id: int) -> ProgressDTO:
        """Get the user's watched progress for a show."""
        return await self._get(ProgressDTO, f"/shows/{external_id}/progress/watched")

    async def get_all_watched_shows(self) -> list[ShowDTO]:
        """Get every show the user has watched at least one episode of."""
        items = await self._get(
            list[WatchedShowDTO],
            "/sync/watched/shows",
            params={"extended": "noseasons"}
        )
        return [item.show for item in items]

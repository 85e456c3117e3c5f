"""Test configuration and fixtures"""

import asyncio
from datetime import datetime, timezone
from typing import Optional

import httpx
import pytest
import pytest_asyncio

from upnext.models import Episode, Show
from upnext.services.credentials import StaticTokenProvider
from upnext.services.sync import SyncService
from upnext.services.trakt import TraktClient
from upnext.services.up_next import UpNextProjector
from upnext.store import EntityStore

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def show_payload(trakt_id: int, title: str, poster: Optional[str] = None, **extra) -> dict:
    payload = {
        "title": title,
        "year": 2010,
        "ids": {"trakt": trakt_id, "slug": title.lower().replace(" ", "-"), "tmdb": trakt_id + 5000},
        "overview": f"{title} overview",
        "runtime": 45,
        "network": "AMC",
        "status": "ended",
        "updated_at": "2024-01-01T00:00:00.000Z",
    }
    if poster:
        payload["images"] = {"poster": [poster], "fanart": [poster.replace("poster", "fanart")]}
    payload.update(extra)
    return payload


def movie_payload(trakt_id: int, title: str, **extra) -> dict:
    payload = {
        "title": title,
        "year": 2001,
        "ids": {"trakt": trakt_id, "slug": title.lower().replace(" ", "-"), "tmdb": trakt_id + 9000},
        "runtime": 178,
        "released": "2001-12-19",
    }
    payload.update(extra)
    return payload


def episode_payload(trakt_id: int, season: int, number: int, title: Optional[str] = None,
                    first_aired: Optional[str] = "2020-01-01T02:00:00.000Z") -> dict:
    return {
        "season": season,
        "number": number,
        "title": title or f"Episode {season}x{number}",
        "ids": {"trakt": trakt_id},
        "overview": "",
        "runtime": 44,
        "first_aired": first_aired,
    }


class FakeTrakt:
    """In-memory Trakt API served through httpx.MockTransport."""

    def __init__(self):
        self.shows: dict[int, dict] = {}
        self.seasons: dict[int, list[int]] = {}
        self.episodes: dict[tuple[int, int], list[dict]] = {}
        self.progress: dict[int, dict] = {}
        self.watched: list[dict] = []
        self.search_results: list[dict] = []
        self.movie_results: list[dict] = []
        # path -> list of status codes answered before serving normally
        self.failures: dict[str, list[int]] = {}
        # paths whose requests never get a response
        self.unreachable: set[str] = set()
        self.requests: list[httpx.Request] = []
        self.delay = 0.0
        self.active = 0
        self.max_active = 0

    def add_show(self, trakt_id: int, title: str, seasons: dict[int, int], poster: Optional[str] = None):
        """Register a show with ``{season number: episode count}``."""
        self.shows[trakt_id] = show_payload(trakt_id, title, poster)
        self.seasons[trakt_id] = list(seasons)
        for season, count in seasons.items():
            self.episodes[(trakt_id, season)] = [
                episode_payload(trakt_id * 1000 + season * 100 + n, season, n)
                for n in range(1, count + 1)
            ]

    def fail(self, path: str, *status_codes: int):
        self.failures[path] = list(status_codes)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            return self._route(request)
        finally:
            self.active -= 1

    def _route(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path in self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        pending = self.failures.get(path)
        if pending:
            return httpx.Response(pending.pop(0), headers={"Retry-After": "1"})

        parts = path.strip("/").split("/")
        if parts[0] == "shows":
            trakt_id = int(parts[1])
            if trakt_id not in self.shows:
                return httpx.Response(404)
            if len(parts) == 2:
                return httpx.Response(200, json=self.shows[trakt_id])
            if parts[2] == "seasons" and len(parts) == 3:
                return httpx.Response(200, json=[
                    {"number": n, "ids": {"trakt": trakt_id * 10 + n}}
                    for n in self.seasons[trakt_id]
                ])
            if parts[2] == "seasons":
                return httpx.Response(200, json=self.episodes.get((trakt_id, int(parts[3])), []))
            if parts[2] == "progress":
                return httpx.Response(200, json=self.progress.get(
                    trakt_id, {"aired": 0, "completed": 0, "seasons": []}
                ))
        if path == "/search/show":
            return httpx.Response(200, json=self.search_results)
        if path == "/search/movie":
            return httpx.Response(200, json=self.movie_results)
        if path == "/sync/watched/shows":
            return httpx.Response(200, json=self.watched)
        if path == "/users/settings":
            return httpx.Response(200, json={"user": {"username": "tester"}})
        return httpx.Response(404)


@pytest.fixture
def fake_trakt():
    return FakeTrakt()


@pytest.fixture
def trakt_client(fake_trakt):
    return TraktClient(
        "https://api.trakt.tv",
        "client-id",
        StaticTokenProvider("test-token"),
        rate_limit_retry_delay=0,
        transport=fake_trakt.transport()
    )


@pytest_asyncio.fixture
async def store(tmp_path):
    store = EntityStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'upnext.db'}")
    await store.migrate()
    yield store
    await store.close()


@pytest.fixture
def sync_service(store, trakt_client):
    return SyncService(store, trakt_client, max_concurrency=2)


@pytest.fixture
def projector(store):
    return UpNextProjector(store)


async def add_show(store: EntityStore, trakt_id: int, title: str, **fields) -> Show:
    async with store.transaction() as session:
        show = Show(trakt_id=trakt_id, title=title, **fields)
        await store.insert(session, show)
    return show


async def add_episode(store: EntityStore, show: Show, season: int, number: int,
                      aired_at: Optional[datetime] = None, watched_at: Optional[datetime] = None,
                      trakt_id: Optional[int] = None, title: Optional[str] = None) -> Episode:
    async with store.transaction() as session:
        episode = Episode(
            show_id=show.id,
            trakt_id=trakt_id or show.trakt_id * 1000 + season * 100 + number,
            season=season,
            number=number,
            title=title or f"Episode {season}x{number}",
            aired_at=aired_at,
            watched_at=watched_at
        )
        await store.insert(session, episode)
    return episode

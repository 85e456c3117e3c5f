import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Protocol

from upnext.errors import NotAuthenticated, Unauthorized

logger = logging.getLogger(__name__)


@dataclass
class Token:
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    def expires_within(self, seconds: float, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.expires_at - now < timedelta(seconds=seconds)


class CredentialProvider(Protocol):
    """Anything that can hand out a bearer token that is valid right now."""

    async def get_valid_access_token(self) -> str:
        ...


class StaticTokenProvider:
    """Fixed token, e.g. from settings. Never refreshes."""

    def __init__(self, access_token: str):
        self.access_token = access_token

    async def get_valid_access_token(self) -> str:
        if not self.access_token:
            raise NotAuthenticated("No access token configured")
        return self.access_token


class RefreshingTokenProvider:
    """
    Keeps a token fresh.

    The refresh callable receives the current token and returns a new one.
    How it talks to the OAuth server is up to the host application.
    """

    def __init__(
        self,
        token: Optional[Token],
        refresh: Callable[[Token], Awaitable[Token]],
        threshold: float = 300
    ):
        self.token = token
        self.refresh = refresh
        self.threshold = threshold
        self._lock = asyncio.Lock()

    async def get_valid_access_token(self) -> str:
        async with self._lock:
            if self.token is None:
                raise NotAuthenticated("User is not authenticated")

            if self.token.expires_within(self.threshold):
                logger.info("Access token expires soon, refreshing")
                try:
                    self.token = await self.refresh(self.token)
                except Exception as e:
                    self.token = None
                    logger.error(f"Token refresh failed: {e}")
                    raise Unauthorized(f"Token refresh failed: {e}") from e

            return self.token.access_token

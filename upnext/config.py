from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///data/upnext.db"

    trakt_base_url: str = "https://api.trakt.tv"
    trakt_api_version: str = "2"
    trakt_client_id: str = ""
    trakt_access_token: str = ""
    request_timeout: float = 30.0

    # None means one task per CPU core
    max_concurrency: Optional[int] = None
    rate_limit_retry_delay: float = 10.0

    # 0 disables the scheduled sync job
    sync_interval_hours: int = 0

    class Config:
        env_prefix = "UPNEXT_"


settings = Settings()

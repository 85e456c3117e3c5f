from upnext.services.credentials import RefreshingTokenProvider, StaticTokenProvider, Token
from upnext.services.trakt import TraktClient
from upnext.services.sync import BatchResult, SyncService
from upnext.services.up_next import UpNextProjector

__all__ = [
    "RefreshingTokenProvider",
    "StaticTokenProvider",
    "Token",
    "TraktClient",
    "BatchResult",
    "SyncService",
    "UpNextProjector"
]

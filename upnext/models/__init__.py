from upnext.models.show import Show
from upnext.models.episode import Episode
from upnext.models.movie import Movie

__all__ = [
    "Show",
    "Episode",
    "Movie"
]

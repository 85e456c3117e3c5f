from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from upnext.database import Base, UTCDateTime


class Show(Base):
    """A tracked show, keyed remotely by its Trakt id."""

    __tablename__ = "shows"

    id: Mapped[int] = mapped_column(primary_key=True)
    trakt_id: Mapped[int] = mapped_column(Integer, unique=True, index=True)
    title: Mapped[str] = mapped_column(String(500))
    year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    overview: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    runtime: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # minutes
    status: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    network: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Cached image URLs, kept when a response comes back without images
    poster_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    backdrop_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    tmdb_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<Show id={self.id} trakt_id={self.trakt_id} title={self.title!r}>"

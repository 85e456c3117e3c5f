from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from upnext.database import Base, UTCDateTime


class Movie(Base):
    """A tracked movie. Same protected-field rules as episodes."""

    __tablename__ = "movies"

    id: Mapped[int] = mapped_column(primary_key=True)
    trakt_id: Mapped[int] = mapped_column(Integer, unique=True, index=True)
    title: Mapped[str] = mapped_column(String(500))
    year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    overview: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    runtime: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    released: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)
    certification: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    tagline: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    watched_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    poster_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    backdrop_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    tmdb_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)

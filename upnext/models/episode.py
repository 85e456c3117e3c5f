from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from upnext.database import Base, UTCDateTime


class Episode(Base):
    """A single episode of a show."""

    __tablename__ = "episodes"
    __table_args__ = (
        UniqueConstraint("show_id", "season", "number", name="idx_episodes_show_season_number"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    show_id: Mapped[int] = mapped_column(Integer, ForeignKey("shows.id", ondelete="CASCADE"), index=True)
    trakt_id: Mapped[int] = mapped_column(Integer, unique=True, index=True)
    season: Mapped[int] = mapped_column(Integer)
    number: Mapped[int] = mapped_column(Integer)
    title: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    overview: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    runtime: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # minutes
    aired_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Owned by the user: only the progress sync may change it
    watched_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    @property
    def code(self) -> str:
        return f"S{self.season:02d}E{self.number:02d}"

    @property
    def is_watched(self) -> bool:
        return self.watched_at is not None

    def __repr__(self) -> str:
        return f"<Episode id={self.id} show_id={self.show_id} {self.code}>"

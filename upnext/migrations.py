"""
Forward-only schema migrations.

Each step runs once and is recorded in ``schema_migrations``; replaying the
list against a fresh or an up-to-date database is a no-op for applied steps.
New steps are appended, never edited.
"""
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

logger = logging.getLogger(__name__)


MIGRATIONS: list[tuple[str, list[str]]] = [
    ("v1", [
        """
        CREATE TABLE shows (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            trakt_id INTEGER NOT NULL UNIQUE,
            title TEXT NOT NULL,
            year INTEGER,
            overview TEXT,
            runtime INTEGER,
            status TEXT,
            network TEXT,
            updated_at DATETIME
        )
        """,
        "CREATE INDEX idx_shows_trakt_id ON shows (trakt_id)",
    ]),
    ("v2", [
        """
        CREATE TABLE episodes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            show_id INTEGER NOT NULL REFERENCES shows (id) ON DELETE CASCADE,
            trakt_id INTEGER NOT NULL UNIQUE,
            season INTEGER NOT NULL,
            number INTEGER NOT NULL,
            title TEXT,
            overview TEXT,
            runtime INTEGER,
            aired_at DATETIME,
            watched_at DATETIME
        )
        """,
        "CREATE INDEX idx_episodes_show_id ON episodes (show_id)",
        "CREATE INDEX idx_episodes_trakt_id ON episodes (trakt_id)",
        "CREATE UNIQUE INDEX idx_episodes_show_season_number ON episodes (show_id, season, number)",
    ]),
    ("v3", [
        """
        CREATE TABLE movies (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            trakt_id INTEGER NOT NULL UNIQUE,
            title TEXT NOT NULL,
            year INTEGER,
            overview TEXT,
            runtime INTEGER,
            released DATETIME,
            certification TEXT,
            tagline TEXT,
            watched_at DATETIME,
            updated_at DATETIME
        )
        """,
        "CREATE INDEX idx_movies_trakt_id ON movies (trakt_id)",
        "CREATE INDEX idx_movies_watched_at ON movies (watched_at)",
        "CREATE INDEX idx_movies_released ON movies (released)",
    ]),
    ("v4", [
        "ALTER TABLE shows ADD COLUMN poster_url TEXT",
        "ALTER TABLE shows ADD COLUMN backdrop_url TEXT",
        "ALTER TABLE shows ADD COLUMN tmdb_id INTEGER",
        "ALTER TABLE movies ADD COLUMN poster_url TEXT",
        "ALTER TABLE movies ADD COLUMN backdrop_url TEXT",
        "ALTER TABLE movies ADD COLUMN tmdb_id INTEGER",
        "CREATE INDEX idx_shows_tmdb_id ON shows (tmdb_id)",
        "CREATE INDEX idx_movies_tmdb_id ON movies (tmdb_id)",
    ]),
]


async def applied_migrations(conn: AsyncConnection) -> set[str]:
    await conn.execute(text(
        "CREATE TABLE IF NOT EXISTS schema_migrations ("
        "name TEXT PRIMARY KEY, "
        "applied_at DATETIME DEFAULT CURRENT_TIMESTAMP)"
    ))
    result = await conn.execute(text("SELECT name FROM schema_migrations"))
    return {row[0] for row in result}


async def run_migrations(conn: AsyncConnection) -> list[str]:
    """Apply pending migrations in order. Returns the names applied."""
    done = await applied_migrations(conn)
    applied = []

    for name, statements in MIGRATIONS:
        if name in done:
            continue
        for statement in statements:
            await conn.execute(text(statement))
        await conn.execute(
            text("INSERT INTO schema_migrations (name) VALUES (:name)"),
            {"name": name}
        )
        applied.append(name)
        logger.info(f"Applied migration {name}")

    return applied

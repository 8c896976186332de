import sqlite3
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, UTC
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from ..exceptions import PersistenceError
from ..models import ContentIdentity, FileLocation, Game, MetadataCandidate

_GAME_COLUMNS = "id, title, platform_id, igdb_id, year, genre, rating, description, cover_art_url"


class LibraryStore:
    """
    Persistence collaborator for the reconciler: games, platforms and file
    locations. Every public call is serialized on one lock so hashing
    workers can share the connection.
    """

    def __init__(self, conn: sqlite3.Connection, lock: Optional[threading.RLock] = None):
        self.conn = conn
        self.lock = lock or threading.RLock()

    # --- Lookups ---

    def find_game_by_content_identity(self, identity: ContentIdentity) -> Optional[Game]:
        with self._guard("find game"):
            row = self.conn.execute(f"""
                SELECT {', '.join('g.' + c.strip() for c in _GAME_COLUMNS.split(','))}
                FROM games g
                JOIN file_locations fl ON fl.game_id = g.id
                WHERE fl.file_hash = ? AND fl.file_size = ?
                ORDER BY g.id
                LIMIT 1
            """, (identity.digest, identity.size_bytes)).fetchone()
        return self._row_to_game(row) if row else None

    def find_locations_by_identity(self, identity: ContentIdentity) -> List[FileLocation]:
        with self._guard("find locations"):
            rows = self.conn.execute("""
                SELECT id, game_id, server_location, file_path
                FROM file_locations
                WHERE file_hash = ? AND file_size = ?
                ORDER BY id
            """, (identity.digest, identity.size_bytes)).fetchall()
        return [
            FileLocation(path=Path(path), identity=identity, game_id=game_id,
                         server_location=server, id=loc_id)
            for loc_id, game_id, server, path in rows
        ]

    def get_game(self, game_id: int) -> Optional[Game]:
        with self._guard("get game"):
            row = self.conn.execute(f"SELECT {_GAME_COLUMNS} FROM games WHERE id = ?", (game_id,)).fetchone()
        return self._row_to_game(row) if row else None

    def list_games(self) -> List[Game]:
        with self._guard("list games"):
            rows = self.conn.execute(f"SELECT {_GAME_COLUMNS} FROM games ORDER BY id").fetchall()
        return [self._row_to_game(r) for r in rows]

    def find_game_for_candidate(self, candidate: MetadataCandidate) -> Optional[Game]:
        with self._guard("match game"):
            game_id = self._match_game(candidate)
        return self.get_game(game_id) if game_id is not None else None

    def list_games_needing_metadata(self, limit: Optional[int] = None) -> List[Tuple[Game, Optional[str]]]:
        """Games missing a description or cover art, oldest first, with their platform name."""
        sql = f"""
            SELECT {', '.join('g.' + c.strip() for c in _GAME_COLUMNS.split(','))}, p.name
            FROM games g
            LEFT JOIN platforms p ON p.id = g.platform_id
            WHERE g.description IS NULL OR g.description = ''
               OR g.cover_art_url IS NULL OR g.cover_art_url = ''
            ORDER BY g.id
        """
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        with self._guard("list games needing metadata"):
            rows = self.conn.execute(sql, params).fetchall()
        return [(self._row_to_game(r[:9]), r[9]) for r in rows]

    def count_locations(self) -> int:
        with self._guard("count locations"):
            return self.conn.execute("SELECT COUNT(*) FROM file_locations").fetchone()[0]

    # --- Writes ---

    def create_game(self, title: str, platform: Optional[str] = None) -> Game:
        with self._guard("create game"), self.conn:
            game_id = self._insert_game(title, platform)
        return self.get_game(game_id)

    def get_or_create_platform(self, name: str) -> int:
        with self._guard("platform lookup"), self.conn:
            return self._platform_id(name)

    def link_location(self, game_id: int, location: FileLocation) -> FileLocation:
        """Attaches a path to a game. Re-linking the same (server, path) moves it."""
        with self._guard("link location"), self.conn:
            loc_id = self._upsert_location(game_id, location)
        location.game_id = game_id
        location.id = loc_id
        return location

    def apply_metadata_update(self,
                              game_id: Optional[int],
                              candidate: MetadataCandidate,
                              location: Optional[FileLocation] = None) -> Game:
        """
        Folds an accepted candidate into a game and links `location` to it.
        When `game_id` is None the candidate is matched to an existing game
        (same catalog id, else same title and platform) and a game is only
        created when nothing matches. One item, one transaction: a failure
        leaves earlier items of a batch untouched.
        """
        now_iso = datetime.now(UTC).isoformat()
        with self._guard(f"apply metadata for {candidate.title!r}"), self.conn:
            if game_id is None:
                game_id = self._match_game(candidate)
            if game_id is None:
                game_id = self._insert_game(candidate.title, candidate.platform)
            elif not self.conn.execute("SELECT 1 FROM games WHERE id = ?", (game_id,)).fetchone():
                raise PersistenceError(f"game {game_id} does not exist")

            self.conn.execute("""
                UPDATE games
                SET igdb_id = COALESCE(?, igdb_id),
                    year = COALESCE(?, year),
                    genre = COALESCE(?, genre),
                    rating = COALESCE(?, rating),
                    description = COALESCE(?, description),
                    cover_art_url = COALESCE(?, cover_art_url),
                    updated_at = ?
                WHERE id = ?
            """, (
                candidate.external_id, candidate.year, candidate.genre, candidate.rating,
                candidate.description, candidate.cover_art_url, now_iso, game_id,
            ))

            if location is not None:
                loc_id = self._upsert_location(game_id, location)

        if location is not None:
            location.game_id = game_id
            location.id = loc_id
        logging.debug(f"Applied metadata {candidate.title!r} to game {game_id}")
        return self.get_game(game_id)

    # --- Internal (caller holds the lock and the transaction) ---

    def _match_game(self, candidate: MetadataCandidate) -> Optional[int]:
        if candidate.external_id is not None:
            row = self.conn.execute(
                "SELECT id FROM games WHERE igdb_id = ? ORDER BY id LIMIT 1", (candidate.external_id,)
            ).fetchone()
            if row:
                return row[0]

        platform_id = None
        if candidate.platform:
            row = self.conn.execute("SELECT id FROM platforms WHERE name = ?", (candidate.platform,)).fetchone()
            if not row:
                return None
            platform_id = row[0]

        sql = "SELECT id FROM games WHERE title = ? COLLATE NOCASE AND platform_id IS ?"
        params: tuple = (candidate.title, platform_id)
        if candidate.external_id is not None:
            # A game already tied to another catalog entry is a different game
            sql += " AND igdb_id IS NULL"
        row = self.conn.execute(sql + " ORDER BY id LIMIT 1", params).fetchone()
        return row[0] if row else None

    def _insert_game(self, title: str, platform: Optional[str]) -> int:
        now_iso = datetime.now(UTC).isoformat()
        platform_id = self._platform_id(platform) if platform else None
        cur = self.conn.execute("""
            INSERT INTO games (title, platform_id, created_at, updated_at)
            VALUES (?, ?, ?, ?)
        """, (title, platform_id, now_iso, now_iso))
        if cur.lastrowid is None:
            raise PersistenceError("Database INSERT failed to return a row ID.")
        return cur.lastrowid

    def _platform_id(self, name: str) -> int:
        row = self.conn.execute("SELECT id FROM platforms WHERE name = ?", (name,)).fetchone()
        if row:
            return row[0]
        now_iso = datetime.now(UTC).isoformat()
        cur = self.conn.execute(
            "INSERT INTO platforms (name, created_at, updated_at) VALUES (?, ?, ?)",
            (name, now_iso, now_iso),
        )
        return cur.lastrowid

    def _upsert_location(self, game_id: int, location: FileLocation) -> int:
        now_iso = datetime.now(UTC).isoformat()
        self.conn.execute("""
            INSERT INTO file_locations
                (game_id, server_location, file_path, file_size, file_hash, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(server_location, file_path) DO UPDATE SET
                game_id = excluded.game_id,
                file_size = excluded.file_size,
                file_hash = excluded.file_hash,
                updated_at = excluded.updated_at
        """, (
            game_id, location.server_location, str(location.path),
            location.identity.size_bytes, location.identity.digest, now_iso, now_iso,
        ))
        row = self.conn.execute(
            "SELECT id FROM file_locations WHERE server_location = ? AND file_path = ?",
            (location.server_location, str(location.path)),
        ).fetchone()
        return row[0]

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        """Serializes access and maps sqlite errors onto PersistenceError."""
        with self.lock:
            try:
                yield
            except sqlite3.OperationalError as e:
                msg = str(e).lower()
                transient = "locked" in msg or "busy" in msg
                raise PersistenceError(f"{operation} failed: {e}", transient=transient) from e
            except sqlite3.Error as e:
                raise PersistenceError(f"{operation} failed: {e}") from e

    @staticmethod
    def _row_to_game(row) -> Game:
        return Game(
            id=row[0], title=row[1], platform_id=row[2], igdb_id=row[3], year=row[4],
            genre=row[5], rating=row[6], description=row[7], cover_art_url=row[8],
        )

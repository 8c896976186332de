"""
Database schema definitions.
"""
import sqlite3
import logging

CURRENT_SCHEMA_VERSION = 1

def init_schema(conn: sqlite3.Connection):
    """
    Applies the core schema to the database.
    Idempotent: safe to run on every startup.
    """
    with conn:
        # 1. Version Tracking (For future migrations)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)

        cur = conn.cursor()
        cur.execute("SELECT version FROM schema_version")
        if not cur.fetchone():
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

        # 2. Platforms
        conn.execute("""
        CREATE TABLE IF NOT EXISTS platforms (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            name            TEXT NOT NULL UNIQUE,
            manufacturer    TEXT,
            release_year    INTEGER,
            created_at      TEXT NOT NULL,
            updated_at      TEXT NOT NULL
        );
        """)

        # 3. Games (the collection)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS games (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            title           TEXT NOT NULL,
            platform_id     INTEGER,
            igdb_id         INTEGER,              -- NULL until metadata is resolved
            year            INTEGER,
            genre           TEXT,
            rating          REAL,
            description     TEXT,
            cover_art_url   TEXT,
            created_at      TEXT NOT NULL,
            updated_at      TEXT NOT NULL,
            FOREIGN KEY(platform_id) REFERENCES platforms(id) ON DELETE SET NULL
        );
        """)

        # 4. File Locations
        # Content identity (digest + size) of a file at one path on one server.
        # Several locations may point at one game; a path belongs to one game.
        conn.execute("""
        CREATE TABLE IF NOT EXISTS file_locations (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            game_id         INTEGER NOT NULL,
            server_location TEXT NOT NULL DEFAULT 'local',
            file_path       TEXT NOT NULL,
            file_size       INTEGER NOT NULL,
            file_hash       TEXT NOT NULL,
            created_at      TEXT NOT NULL,
            updated_at      TEXT NOT NULL,
            UNIQUE(server_location, file_path),
            FOREIGN KEY(game_id) REFERENCES games(id) ON DELETE CASCADE
        );
        """)

        # 5. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_games_title ON games(title);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_games_igdb_id ON games(igdb_id);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_locations_identity ON file_locations(file_hash, file_size);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_locations_game_id ON file_locations(game_id);")

    logging.debug("Database schema initialized.")

"""Durable discovery progress."""

from datetime import datetime, timezone

from .database import SQLiteDatabase


class ProgressCursor:
    """
    Last ledger height whose notifications have been fully processed.

    The cursor is saved only after every plan in a window is cached, so a
    crash between the two re-scans the window on restart; plan upserts are
    idempotent, which makes the re-scan harmless. Saves never move the cursor
    backwards.
    """

    def __init__(self, db_path: str = "data/relayer.db", name: str = "discovery",
                 start_height: int = 0):
        self.db = SQLiteDatabase(db_path)
        self.logger = self.db.logger.bind(cursor=name)
        self.name = name
        self.start_height = start_height
        self._init_database()

    def _init_database(self) -> None:
        with self.db.write("init_cursor") as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cursors (
                    name TEXT PRIMARY KEY,
                    height INTEGER NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

    def load(self) -> int:
        """Stored height, or ``start_height`` when nothing has been saved yet."""
        with self.db.read("load_cursor") as conn:
            row = conn.execute(
                "SELECT height FROM cursors WHERE name = ?", (self.name,)
            ).fetchone()
        return row["height"] if row else self.start_height

    def save(self, height: int) -> int:
        """
        Persist ``height`` if it advances the cursor.

        Returns:
            The stored height after the call
        """
        with self.db.write("save_cursor") as conn:
            conn.execute("""
                INSERT INTO cursors (name, height, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    height = MAX(cursors.height, excluded.height),
                    updated_at = excluded.updated_at
            """, (self.name, height, datetime.now(timezone.utc).isoformat()))
            stored = conn.execute(
                "SELECT height FROM cursors WHERE name = ?", (self.name,)
            ).fetchone()["height"]

        if stored != height:
            self.logger.warning("Cursor save ignored, would move backwards",
                                requested=height, stored=stored)
        else:
            self.logger.debug("Cursor saved", height=height)
        return stored

import aiosqlite
import os
import pathlib
import logging
from typing import Optional, Iterable

logger = logging.getLogger(__name__)

# Columns that may be written through upsert_competition. `id` and `created_at` are owned by SQLite.
COMPETITION_COLUMNS = (
    'guild_id', 'competition_id', 'type', 'title', 'metric', 'verification_code',
    'starts_at', 'ends_at', 'message_link', 'emoji', 'status', 'starting_hour',
    'poll_message_id', 'tiebreaker_poll_message_id',
)

SETTINGS_COLUMNS = (
    'clan_events_role_id', 'skill_blacklist', 'boss_blacklist', 'last_chosen_metrics',
    'days_after_poll', 'tiebreaker_poll_duration', 'default_starting_hour',
)

CHANNEL_COLUMNS = ('announcements_channel_id', 'event_planning_channel_id')


class Database:
    def __init__(self, db_name: Optional[str] = None):
        # SQLite only needs a single connection object
        self.conn = None
        self.db_name = db_name or os.getenv('DB_NAME', 'clerk.db')

    async def connect(self):
        """Open the SQLite file, enable foreign keys and bring the schema up to date."""
        self.conn = await aiosqlite.connect(self.db_name)
        # rows behave like dicts so services can address columns by name
        self.conn.row_factory = aiosqlite.Row
        await self.conn.execute("PRAGMA foreign_keys = ON")
        await self.conn.commit()
        await self._run_migrations()
        logger.info("Database connected and initialised", extra={'db_name': self.db_name})

    async def close(self):
        if self.conn:
            await self.conn.close()
            self.conn = None

    async def _execute(self, query, args=None, fetch=None):
        """Shared execution helper."""
        async with self.conn.cursor() as cursor:
            await cursor.execute(query, args or ())
            if fetch == 'one':
                return await cursor.fetchone()
            if fetch == 'all':
                return await cursor.fetchall()
            # INSERT, UPDATE and DELETE are committed here
            await self.conn.commit()
            if fetch == 'lastrowid':
                return cursor.lastrowid
            return cursor.rowcount

    # --- Competition Methods ---

    async def get_competition_row(self, row_id: int) -> Optional[dict]:
        sql = "SELECT * FROM competitions WHERE id = ?"
        result = await self._execute(sql, (row_id,), fetch='one')
        return dict(result) if result else None

    async def get_competition_by_external_id(self, competition_id: int) -> Optional[dict]:
        """Look up a competition by its Wise Old Man ID."""
        sql = "SELECT * FROM competitions WHERE competition_id = ?"
        result = await self._execute(sql, (competition_id,), fetch='one')
        return dict(result) if result else None

    async def get_competition_by_poll_message(self, message_id: int) -> Optional[dict]:
        """Match either the original poll or the tiebreaker poll."""
        sql = """
            SELECT * FROM competitions
            WHERE poll_message_id = ? OR tiebreaker_poll_message_id = ?
        """
        result = await self._execute(sql, (message_id, message_id), fetch='one')
        return dict(result) if result else None

    async def get_competition_by_message_link(self, message_link: str) -> Optional[dict]:
        sql = "SELECT * FROM competitions WHERE message_link = ?"
        result = await self._execute(sql, (message_link,), fetch='one')
        return dict(result) if result else None

    async def get_competitions_by_status(self, statuses: Iterable[int]) -> list[dict]:
        statuses = list(statuses)
        if not statuses:
            return []
        placeholders = ','.join('?' for _ in statuses)
        sql = f"SELECT * FROM competitions WHERE status IN ({placeholders}) ORDER BY id"
        results = await self._execute(sql, tuple(statuses), fetch='all')
        return [dict(row) for row in results] if results else []

    async def get_unresolved_competitions(self) -> list[dict]:
        """Rows whose external competition has not been created yet."""
        sql = "SELECT * FROM competitions WHERE competition_id IS NULL ORDER BY id"
        results = await self._execute(sql, fetch='all')
        return [dict(row) for row in results] if results else []

    async def get_guild_competitions(self, guild_id: int) -> list[dict]:
        sql = """
            SELECT * FROM competitions
            WHERE guild_id = ? AND competition_id IS NOT NULL
            ORDER BY competition_id DESC
        """
        results = await self._execute(sql, (guild_id,), fetch='all')
        return [dict(row) for row in results] if results else []

    async def insert_competition(self, values: dict) -> int:
        """Insert a competition row and return its local id."""
        columns = [c for c in COMPETITION_COLUMNS if c in values]
        placeholders = ','.join('?' for _ in columns)
        sql = f"INSERT INTO competitions ({', '.join(columns)}) VALUES ({placeholders})"
        return await self._execute(sql, tuple(values[c] for c in columns), fetch='lastrowid')

    async def update_competition(self, row_id: int, values: dict) -> int:
        columns = [c for c in COMPETITION_COLUMNS if c in values]
        if not columns:
            return 0
        assignments = ', '.join(f"{c} = ?" for c in columns)
        sql = f"UPDATE competitions SET {assignments} WHERE id = ?"
        params = tuple(values[c] for c in columns) + (row_id,)
        return await self._execute(sql, params)

    async def delete_competition_row(self, row_id: int) -> bool:
        sql = "DELETE FROM competitions WHERE id = ?"
        rows_affected = await self._execute(sql, (row_id,))
        return rows_affected > 0

    async def delete_competition_by_external_id(self, competition_id: int) -> bool:
        sql = "DELETE FROM competitions WHERE competition_id = ?"
        rows_affected = await self._execute(sql, (competition_id,))
        return rows_affected > 0

    # --- Settings Methods ---

    async def get_competition_settings(self, guild_id: int) -> Optional[dict]:
        sql = "SELECT * FROM competition_settings WHERE guild_id = ?"
        result = await self._execute(sql, (guild_id,), fetch='one')
        return dict(result) if result else None

    async def upsert_competition_settings(self, guild_id: int, values: dict):
        """Create or partially update a guild's competition settings."""
        columns = [c for c in SETTINGS_COLUMNS if c in values]
        if not columns:
            await self._execute("INSERT OR IGNORE INTO competition_settings (guild_id) VALUES (?)", (guild_id,))
            return
        placeholders = ','.join('?' for _ in columns)
        updates = ', '.join(f"{c} = excluded.{c}" for c in columns)
        sql = f"""
            INSERT INTO competition_settings (guild_id, {', '.join(columns)})
            VALUES (?, {placeholders})
            ON CONFLICT(guild_id) DO UPDATE SET {updates};
        """
        await self._execute(sql, (guild_id,) + tuple(values[c] for c in columns))

    async def get_channel_settings(self, guild_id: int) -> Optional[dict]:
        sql = "SELECT * FROM channel_settings WHERE guild_id = ?"
        result = await self._execute(sql, (guild_id,), fetch='one')
        return dict(result) if result else None

    async def upsert_channel_settings(self, guild_id: int, values: dict):
        columns = [c for c in CHANNEL_COLUMNS if c in values]
        if not columns:
            return
        placeholders = ','.join('?' for _ in columns)
        updates = ', '.join(f"{c} = excluded.{c}" for c in columns)
        sql = f"""
            INSERT INTO channel_settings (guild_id, {', '.join(columns)})
            VALUES (?, {placeholders})
            ON CONFLICT(guild_id) DO UPDATE SET {updates};
        """
        await self._execute(sql, (guild_id,) + tuple(values[c] for c in columns))

    async def _run_migrations(self):
        """
        Apply version-numbered migrations.
        Every `migrations/versions/NNN_description.sql` file newer than the
        database's `user_version` is executed in order.
        """
        logger.info("Checking database migrations...")

        migrations_path = pathlib.Path(__file__).parent.parent / "migrations" / "versions"
        if not migrations_path.is_dir():
            logger.warning(f"Migrations directory not found, skipping: {migrations_path}")
            return

        async with self.conn.cursor() as cursor:
            await cursor.execute("PRAGMA user_version")
            current_version = (await cursor.fetchone())[0]
        logger.info(f"Current database version: {current_version}")

        try:
            migration_files = sorted(
                migrations_path.glob("*.sql"),
                key=lambda p: int(p.stem.split('_')[0])
            )
        except (ValueError, IndexError):
            logger.error("Migration file names must look like 'NNN_description.sql'.")
            raise

        latest_version = current_version
        for migration_file in migration_files:
            try:
                file_version = int(migration_file.stem.split('_')[0])

                if file_version > current_version:
                    logger.info(f"Applying migration v{file_version} - {migration_file.name}")
                    sql_script = migration_file.read_text(encoding='utf-8')

                    await self.conn.executescript(sql_script)
                    await self.conn.execute(f"PRAGMA user_version = {file_version}")
                    await self.conn.commit()

                    logger.info(f"Database version is now {file_version}")
                    latest_version = file_version
            except Exception:
                logger.error(f"Migration failed: {migration_file.name}", exc_info=True)
                await self.conn.rollback()
                # refuse to start on a half-migrated schema
                raise

        if latest_version == current_version:
            logger.info("Database schema is up to date.")
        else:
            logger.info(f"Migrations finished, database version: {latest_version}")

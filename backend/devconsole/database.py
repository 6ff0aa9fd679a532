"""Installation database access - SQLite through aiosqlite"""
import json
import logging
import re
import sqlite3
from pathlib import Path
from typing import Any, Dict, List

import aiosqlite

from devconsole.errors import ExecutionError, ValidationError

logger = logging.getLogger(__name__)

_KEY_UNSAFE = re.compile(r"[^a-z0-9_\-]")


def is_select_query(query: str) -> bool:
    """Only statements starting with SELECT (any case, after whitespace) may run"""
    return query.lstrip().upper().startswith("SELECT")


class SiteDatabase:
    """WordPress-style options/posts tables plus read-only query access"""

    def __init__(self, db_path: str, table_prefix: str = "wp_"):
        self.db_path = db_path
        self.prefix = table_prefix

    @property
    def options_table(self) -> str:
        return f"{self.prefix}options"

    @property
    def posts_table(self) -> str:
        return f"{self.prefix}posts"

    @property
    def users_table(self) -> str:
        return f"{self.prefix}users"

    async def init_db(self):
        """Create the tables this connector relies on if they are missing"""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.options_table} (
                    option_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    option_name TEXT NOT NULL UNIQUE,
                    option_value TEXT NOT NULL DEFAULT '',
                    autoload TEXT NOT NULL DEFAULT 'yes'
                )
            """)
            await db.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.posts_table} (
                    ID INTEGER PRIMARY KEY AUTOINCREMENT,
                    post_title TEXT NOT NULL DEFAULT '',
                    post_content TEXT NOT NULL DEFAULT '',
                    post_status TEXT NOT NULL DEFAULT 'publish',
                    post_type TEXT NOT NULL DEFAULT 'post',
                    post_date TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
            """)
            await db.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.users_table} (
                    ID INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_login TEXT NOT NULL UNIQUE,
                    user_email TEXT NOT NULL DEFAULT ''
                )
            """)
            await db.commit()

    async def get_option(self, name: str, default: Any = None) -> Any:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                f"SELECT option_value FROM {self.options_table} WHERE option_name = ?", (name,)
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            return row[0]

    async def update_option(self, name: str, value: Any):
        value_str = json.dumps(value) if not isinstance(value, str) else value
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                f"""INSERT INTO {self.options_table} (option_name, option_value) VALUES (?, ?)
                ON CONFLICT(option_name) DO UPDATE SET option_value = excluded.option_value""",
                (name, value_str)
            )
            await db.commit()

    async def list_tables(self) -> List[str]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
            ) as cursor:
                return [row[0] async for row in cursor]

    async def _read_only(self, query: str, params: tuple = ()) -> List[Dict[str, Any]]:
        uri = f"{Path(self.db_path).resolve().as_uri()}?mode=ro"
        try:
            db = await aiosqlite.connect(uri, uri=True)
        except sqlite3.Error as e:
            raise ExecutionError(f"Could not open the database: {e}") from e
        try:
            db.row_factory = aiosqlite.Row
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
            return [dict(row) for row in rows]
        except (sqlite3.Error, sqlite3.Warning) as e:
            raise ValidationError(f"Query failed: {e}") from e
        finally:
            await db.close()

    async def run_select(self, query: str) -> List[Dict[str, Any]]:
        """Run one SELECT statement on a read-only connection"""
        if not is_select_query(query):
            raise ValidationError("Only SELECT queries are permitted.")
        return await self._read_only(query)

    async def get_options(self, option_names: List[str]) -> List[Dict[str, Any]]:
        if not option_names:
            return []
        placeholders = ", ".join("?" for _ in option_names)
        return await self._read_only(
            f"SELECT option_name, option_value FROM {self.options_table} WHERE option_name IN ({placeholders})",
            tuple(str(n) for n in option_names),
        )

    async def list_posts(self, post_type: str = "post", limit: int = 10, offset: int = 0) -> List[Dict[str, Any]]:
        post_type = _KEY_UNSAFE.sub("", str(post_type).lower()) or "post"
        return await self._read_only(
            f"""SELECT ID, post_title, post_status, post_type, post_date FROM {self.posts_table}
            WHERE post_type = ? ORDER BY post_date DESC, ID DESC LIMIT ? OFFSET ?""",
            (post_type, int(limit), int(offset)),
        )

    async def user_exists(self, login: str) -> bool:
        rows = await self._read_only(
            f"SELECT 1 FROM {self.users_table} WHERE user_login = ? LIMIT 1", (login,)
        )
        return bool(rows)

"""
PostgreSQL persistence layer for the Menu Service.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Sequence

import asyncpg

from shared.errors import StorageError
from shared.logging import get_logger
from ..menus.models import (
    Category, Favorite, FavoriteMenuRow, Genre, MAX_ID, MenuRow, Relation, User
)
from .base import MenuDriver, Storage, StorageSession, UniqueViolation, UserDriver


# relation -> (link table, reference table, reference key)
RELATION_TABLES = {
    Relation.GENRES: ("menu_genre_relation", "eating_genre_list", "genre_id"),
    Relation.CATEGORIES: ("menu_category_relation", "eating_category_list", "category_id"),
}

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS menu_list (
        menu_id SERIAL PRIMARY KEY,
        menu_name VARCHAR(50) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS eating_genre_list (
        genre_id SERIAL PRIMARY KEY,
        genre_name VARCHAR(50) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS eating_category_list (
        category_id SERIAL PRIMARY KEY,
        category_name VARCHAR(50) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS menu_genre_relation (
        menu_id INTEGER NOT NULL,
        genre_id INTEGER NOT NULL,
        PRIMARY KEY (menu_id, genre_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS menu_category_relation (
        menu_id INTEGER NOT NULL,
        category_id INTEGER NOT NULL,
        PRIMARY KEY (menu_id, category_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        user_id SERIAL PRIMARY KEY,
        auth0_sub VARCHAR(255) NOT NULL UNIQUE,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS favorites (
        favorite_id SERIAL PRIMARY KEY,
        user_id INTEGER NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
        menu_id INTEGER NOT NULL,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_favorites_user ON favorites(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_favorites_menu ON favorites(menu_id)",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_favorites_user_menu ON favorites(user_id, menu_id)",
]


def _menu(row) -> MenuRow:
    return MenuRow(menu_id=row["menu_id"], menu_name=row["menu_name"])


def _user(row) -> User:
    return User(
        user_id=row["user_id"],
        auth0_sub=row["auth0_sub"],
        created_at=row["created_at"],
        updated_at=row["updated_at"]
    )


def _favorite(row) -> Favorite:
    return Favorite(
        favorite_id=row["favorite_id"],
        user_id=row["user_id"],
        menu_id=row["menu_id"],
        created_at=row["created_at"]
    )


def _affected(status: str) -> int:
    """Row count from a command tag such as 'DELETE 3'."""
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError):
        return 0


class PostgresMenuDriver(MenuDriver):
    """Menu driver bound to one connection inside a transaction."""

    def __init__(self, conn: asyncpg.Connection):
        self._conn = conn

    async def list_menus(self) -> List[MenuRow]:
        rows = await self._conn.fetch("SELECT menu_id, menu_name FROM menu_list ORDER BY menu_id")
        return [_menu(row) for row in rows]

    async def get_menu(self, menu_id: int) -> Optional[MenuRow]:
        row = await self._conn.fetchrow(
            "SELECT menu_id, menu_name FROM menu_list WHERE menu_id = $1", menu_id
        )
        return _menu(row) if row else None

    async def lock_menu(self, menu_id: int) -> Optional[MenuRow]:
        row = await self._conn.fetchrow(
            "SELECT menu_id, menu_name FROM menu_list WHERE menu_id = $1 FOR UPDATE", menu_id
        )
        return _menu(row) if row else None

    async def insert_menu(self, menu_name: str) -> MenuRow:
        row = await self._conn.fetchrow(
            "INSERT INTO menu_list (menu_name) VALUES ($1) RETURNING menu_id, menu_name", menu_name
        )
        return _menu(row)

    async def update_menu_name(self, menu_id: int, menu_name: str) -> None:
        await self._conn.execute(
            "UPDATE menu_list SET menu_name = $2 WHERE menu_id = $1", menu_id, menu_name
        )

    async def delete_menu(self, menu_id: int) -> bool:
        status = await self._conn.execute("DELETE FROM menu_list WHERE menu_id = $1", menu_id)
        return _affected(status) > 0

    async def find_reference_ids(self, relation: Relation, ids: Sequence[int]) -> List[int]:
        # ids outside the int4 key range cannot exist
        ids = [i for i in ids if 1 <= i <= MAX_ID]
        if not ids:
            return []
        _, table, key = RELATION_TABLES[relation]
        rows = await self._conn.fetch(
            f"SELECT {key} FROM {table} WHERE {key} = ANY($1::int[]) ORDER BY {key}", list(ids)
        )
        return [row[key] for row in rows]

    async def linked_ids(self, relation: Relation, menu_ids: Sequence[int]) -> Dict[int, List[int]]:
        links: Dict[int, List[int]] = {menu_id: [] for menu_id in menu_ids}
        if not menu_ids:
            return links
        link_table, _, key = RELATION_TABLES[relation]
        rows = await self._conn.fetch(
            f"SELECT menu_id, {key} FROM {link_table} "
            f"WHERE menu_id = ANY($1::int[]) ORDER BY menu_id, {key}",
            list(menu_ids)
        )
        for row in rows:
            links[row["menu_id"]].append(row[key])
        return links

    async def add_links(self, relation: Relation, menu_id: int, ids: Sequence[int]) -> None:
        if not ids:
            return
        link_table, _, key = RELATION_TABLES[relation]
        await self._conn.execute(
            f"INSERT INTO {link_table} (menu_id, {key}) "
            f"SELECT $1, unnest($2::int[]) ON CONFLICT DO NOTHING",
            menu_id, list(ids)
        )

    async def replace_links(self, relation: Relation, menu_id: int, ids: Sequence[int]) -> None:
        link_table, _, key = RELATION_TABLES[relation]
        await self._conn.execute(
            f"DELETE FROM {link_table} WHERE menu_id = $1 AND NOT ({key} = ANY($2::int[]))",
            menu_id, list(ids)
        )
        await self.add_links(relation, menu_id, ids)

    async def clear_links(self, menu_id: int) -> None:
        for link_table, _, _ in RELATION_TABLES.values():
            await self._conn.execute(f"DELETE FROM {link_table} WHERE menu_id = $1", menu_id)

    async def list_genres(self) -> List[Genre]:
        rows = await self._conn.fetch(
            "SELECT genre_id, genre_name FROM eating_genre_list ORDER BY genre_id"
        )
        return [Genre(genre_id=row["genre_id"], genre_name=row["genre_name"]) for row in rows]

    async def list_categories(self) -> List[Category]:
        rows = await self._conn.fetch(
            "SELECT category_id, category_name FROM eating_category_list ORDER BY category_id"
        )
        return [
            Category(category_id=row["category_id"], category_name=row["category_name"])
            for row in rows
        ]


class PostgresUserDriver(UserDriver):
    """User driver bound to one connection inside a transaction."""

    def __init__(self, conn: asyncpg.Connection):
        self._conn = conn

    async def get_user_by_subject(self, auth0_sub: str) -> Optional[User]:
        row = await self._conn.fetchrow("SELECT * FROM users WHERE auth0_sub = $1", auth0_sub)
        return _user(row) if row else None

    async def insert_user(self, auth0_sub: str) -> User:
        try:
            row = await self._conn.fetchrow(
                "INSERT INTO users (auth0_sub) VALUES ($1) RETURNING *", auth0_sub
            )
        except asyncpg.UniqueViolationError as e:
            raise UniqueViolation(e.constraint_name) from e
        return _user(row)

    async def get_favorite(self, favorite_id: int) -> Optional[Favorite]:
        row = await self._conn.fetchrow(
            "SELECT * FROM favorites WHERE favorite_id = $1", favorite_id
        )
        return _favorite(row) if row else None

    async def find_favorite(self, user_id: int, menu_id: int) -> Optional[Favorite]:
        row = await self._conn.fetchrow(
            "SELECT * FROM favorites WHERE user_id = $1 AND menu_id = $2", user_id, menu_id
        )
        return _favorite(row) if row else None

    async def insert_favorite(self, user_id: int, menu_id: int) -> Favorite:
        try:
            row = await self._conn.fetchrow(
                "INSERT INTO favorites (user_id, menu_id) VALUES ($1, $2) RETURNING *",
                user_id, menu_id
            )
        except asyncpg.UniqueViolationError as e:
            raise UniqueViolation(e.constraint_name) from e
        return _favorite(row)

    async def delete_favorite(self, favorite_id: int) -> bool:
        status = await self._conn.execute(
            "DELETE FROM favorites WHERE favorite_id = $1", favorite_id
        )
        return _affected(status) > 0

    async def delete_favorites_for_menu(self, menu_id: int) -> int:
        status = await self._conn.execute("DELETE FROM favorites WHERE menu_id = $1", menu_id)
        return _affected(status)

    async def list_favorite_menus(self, user_id: int) -> List[FavoriteMenuRow]:
        rows = await self._conn.fetch("""
            SELECT f.favorite_id, f.user_id, f.menu_id, f.created_at, m.menu_name
            FROM favorites f
            INNER JOIN menu_list m ON m.menu_id = f.menu_id
            WHERE f.user_id = $1
            ORDER BY f.created_at DESC, f.favorite_id DESC
        """, user_id)
        return [
            FavoriteMenuRow(
                favorite_id=row["favorite_id"],
                user_id=row["user_id"],
                menu_id=row["menu_id"],
                menu_name=row["menu_name"],
                created_at=row["created_at"]
            )
            for row in rows
        ]


class PostgreSQLStorage(Storage):
    """asyncpg-backed storage with a shared connection pool."""

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10, command_timeout: float = 30):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.logger = get_logger("menu.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the pool and create tables if they don't exist."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout
            )
            await self._create_tables()
            self.logger.info("PostgreSQL storage started")
        except (asyncpg.PostgresError, OSError) as e:
            self.logger.error("Failed to start PostgreSQL storage", error=str(e))
            raise StorageError("Failed to start storage") from e

    async def stop(self):
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL storage stopped")

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            for statement in SCHEMA:
                await conn.execute(statement)

    async def check_health(self) -> bool:
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            self.logger.error("Database health check failed", error=str(e))
            return False

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StorageSession]:
        if self.pool is None:
            raise StorageError("Storage not started")
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    yield StorageSession(PostgresMenuDriver(conn), PostgresUserDriver(conn))
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            self.logger.error("Storage operation failed", error=str(e))
            raise StorageError() from e

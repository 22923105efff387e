"""
Relationship engine: transactional writes to menus, their genre and
category associations, and user favorites.

Every public operation runs inside exactly one storage transaction. Any
exception raised inside it (domain error or storage fault) rolls the whole
operation back before it reaches the caller, so association sets are never
left half-replaced.
"""

from contextlib import nullcontext
from typing import Iterable, List, Optional

from shared.errors import (
    DuplicateFavoriteError, FavoriteNotFoundError, ForbiddenError, MenuNotFoundError
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..persistence.base import Storage, StorageSession, UniqueViolation
from .models import Favorite, Menu, Relation


def unique_ids(ids: Iterable[int]) -> List[int]:
    """Drop repeated ids, keeping first-seen order."""
    return list(dict.fromkeys(ids))


class RelationshipEngine:
    """Create/replace/delete menu associations and favorites."""

    def __init__(self, storage: Storage, metrics: Optional[MetricsCollector] = None):
        self.storage = storage
        self.metrics = metrics
        self.logger = get_logger("menu.relations")

    def _timed(self, operation: str):
        return self.metrics.time_operation(operation) if self.metrics else nullcontext()

    # Menus

    async def create_menu(self, menu_name: str, genre_ids: Iterable[int], category_ids: Iterable[int]) -> Menu:
        """Insert a menu and link it to the genres/categories that exist.

        Unknown ids are dropped, so the returned sets may be narrower than
        the request.
        """
        with self._timed("create_menu"):
            async with self.storage.transaction() as tx:
                row = await tx.menus.insert_menu(menu_name)
                genres = await self._attach(tx, Relation.GENRES, row.menu_id, genre_ids)
                categories = await self._attach(tx, Relation.CATEGORIES, row.menu_id, category_ids)

        self.logger.info("Menu created", menu_id=row.menu_id, genre_ids=genres, category_ids=categories)
        return Menu(row.menu_id, row.menu_name, genres, categories)

    async def update_menu(self, menu_id: int, menu_name: str,
                          genre_ids: Iterable[int], category_ids: Iterable[int]) -> Menu:
        """Rename a menu and replace both association sets."""
        with self._timed("update_menu"):
            async with self.storage.transaction() as tx:
                await self._require_menu(tx, menu_id)
                await tx.menus.update_menu_name(menu_id, menu_name)
                genres = await self._replace(tx, Relation.GENRES, menu_id, genre_ids)
                categories = await self._replace(tx, Relation.CATEGORIES, menu_id, category_ids)

        self.logger.info("Menu updated", menu_id=menu_id, genre_ids=genres, category_ids=categories)
        return Menu(menu_id, menu_name, genres, categories)

    async def update_genre_relations(self, menu_id: int, genre_ids: Iterable[int]) -> Menu:
        """Replace the menu's genre set; categories are left untouched."""
        return await self._update_relation("update_genre_relations", Relation.GENRES, menu_id, genre_ids)

    async def update_category_relations(self, menu_id: int, category_ids: Iterable[int]) -> Menu:
        """Replace the menu's category set; genres are left untouched."""
        return await self._update_relation("update_category_relations", Relation.CATEGORIES, menu_id, category_ids)

    async def _update_relation(self, operation: str, relation: Relation, menu_id: int, ids: Iterable[int]) -> Menu:
        with self._timed(operation):
            async with self.storage.transaction() as tx:
                row = await self._require_menu(tx, menu_id)
                await self._replace(tx, relation, menu_id, ids)
                genres = await self._linked(tx, Relation.GENRES, menu_id)
                categories = await self._linked(tx, Relation.CATEGORIES, menu_id)

        self.logger.info("Menu relations replaced", menu_id=menu_id, relation=relation.value)
        return Menu(row.menu_id, row.menu_name, genres, categories)

    async def delete_menu(self, menu_id: int) -> None:
        """Delete a menu together with its association rows and favorites."""
        with self._timed("delete_menu"):
            async with self.storage.transaction() as tx:
                if not await tx.menus.delete_menu(menu_id):
                    raise MenuNotFoundError(menu_id)
                await tx.menus.clear_links(menu_id)
                removed = await tx.users.delete_favorites_for_menu(menu_id)

        self.logger.info("Menu deleted", menu_id=menu_id, favorites_removed=removed)

    async def _require_menu(self, tx: StorageSession, menu_id: int):
        """Fetch the menu row, locking it so writes to one menu serialize."""
        row = await tx.menus.lock_menu(menu_id)
        if row is None:
            raise MenuNotFoundError(menu_id)
        return row

    async def _attach(self, tx: StorageSession, relation: Relation, menu_id: int, ids: Iterable[int]) -> List[int]:
        resolved = await tx.menus.find_reference_ids(relation, unique_ids(ids))
        await tx.menus.add_links(relation, menu_id, resolved)
        return sorted(resolved)

    async def _replace(self, tx: StorageSession, relation: Relation, menu_id: int, ids: Iterable[int]) -> List[int]:
        """Set the association to exactly the existing subset of `ids`."""
        resolved = await tx.menus.find_reference_ids(relation, unique_ids(ids))
        await tx.menus.replace_links(relation, menu_id, resolved)
        return sorted(resolved)

    async def _linked(self, tx: StorageSession, relation: Relation, menu_id: int) -> List[int]:
        links = await tx.menus.linked_ids(relation, [menu_id])
        return sorted(links.get(menu_id, []))

    # Favorites

    async def add_favorite(self, user_id: int, menu_id: int) -> Favorite:
        with self._timed("add_favorite"):
            async with self.storage.transaction() as tx:
                if await tx.users.find_favorite(user_id, menu_id) is not None:
                    raise DuplicateFavoriteError(user_id, menu_id)
                await self._require_menu(tx, menu_id)
                try:
                    favorite = await tx.users.insert_favorite(user_id, menu_id)
                except UniqueViolation as e:
                    # concurrent add of the same pair
                    raise DuplicateFavoriteError(user_id, menu_id) from e

        self.logger.info("Favorite added", favorite_id=favorite.favorite_id, menu_id=menu_id)
        return favorite

    async def remove_favorite(self, user_id: int, menu_id: int) -> None:
        with self._timed("remove_favorite"):
            async with self.storage.transaction() as tx:
                favorite = await tx.users.find_favorite(user_id, menu_id)
                if favorite is None:
                    raise FavoriteNotFoundError(details={"menu_id": menu_id})
                await tx.users.delete_favorite(favorite.favorite_id)

        self.logger.info("Favorite removed", favorite_id=favorite.favorite_id, menu_id=menu_id)

    async def remove_favorite_by_id(self, favorite_id: int, requesting_user_id: int) -> None:
        """Delete a favorite by id; only its owner may do so."""
        with self._timed("remove_favorite_by_id"):
            async with self.storage.transaction() as tx:
                favorite = await tx.users.get_favorite(favorite_id)
                if favorite is None:
                    raise FavoriteNotFoundError(details={"favorite_id": favorite_id})
                if favorite.user_id != requesting_user_id:
                    raise ForbiddenError(details={"favorite_id": favorite_id})
                await tx.users.delete_favorite(favorite_id)

        self.logger.info("Favorite removed", favorite_id=favorite_id, menu_id=favorite.menu_id)

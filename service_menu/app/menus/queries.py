"""
Read side: menus with their association id sets, and favorites with menu
detail. Association sets are loaded with one read per relation for the
whole result, never per row.
"""

from typing import List

from shared.errors import MenuNotFoundError
from shared.logging import get_logger
from ..persistence.base import Storage
from .models import Category, FavoriteDetail, FavoriteStatus, Genre, Menu, Relation


class QueryAssembler:
    """Builds read models for the HTTP layer."""

    def __init__(self, storage: Storage):
        self.storage = storage
        self.logger = get_logger("menu.queries")

    async def list_menus(self) -> List[Menu]:
        async with self.storage.transaction() as tx:
            rows = await tx.menus.list_menus()
            menu_ids = [row.menu_id for row in rows]
            genres = await tx.menus.linked_ids(Relation.GENRES, menu_ids)
            categories = await tx.menus.linked_ids(Relation.CATEGORIES, menu_ids)

        return [
            Menu(
                menu_id=row.menu_id,
                menu_name=row.menu_name,
                genre_ids=sorted(genres.get(row.menu_id, [])),
                category_ids=sorted(categories.get(row.menu_id, []))
            )
            for row in rows
        ]

    async def list_favorites(self, user_id: int) -> List[FavoriteDetail]:
        """Favorites of `user_id`, newest first.

        Favorites whose menu no longer exists are left out.
        """
        async with self.storage.transaction() as tx:
            rows = await tx.users.list_favorite_menus(user_id)
            menu_ids = list(dict.fromkeys(row.menu_id for row in rows))
            genres = await tx.menus.linked_ids(Relation.GENRES, menu_ids)
            categories = await tx.menus.linked_ids(Relation.CATEGORIES, menu_ids)

        return [
            FavoriteDetail(
                favorite_id=row.favorite_id,
                menu_id=row.menu_id,
                menu_name=row.menu_name,
                created_at=row.created_at,
                genre_ids=sorted(genres.get(row.menu_id, [])),
                category_ids=sorted(categories.get(row.menu_id, []))
            )
            for row in rows
        ]

    async def favorite_status(self, user_id: int, menu_id: int) -> FavoriteStatus:
        async with self.storage.transaction() as tx:
            if await tx.menus.get_menu(menu_id) is None:
                raise MenuNotFoundError(menu_id)
            favorite = await tx.users.find_favorite(user_id, menu_id)

        if favorite is None:
            return FavoriteStatus(is_favorite=False)
        return FavoriteStatus(is_favorite=True, favorite_id=favorite.favorite_id)

    async def list_genres(self) -> List[Genre]:
        async with self.storage.transaction() as tx:
            return await tx.menus.list_genres()

    async def list_categories(self) -> List[Category]:
        async with self.storage.transaction() as tx:
            return await tx.menus.list_categories()

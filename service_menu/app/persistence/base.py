"""
Storage capability interfaces.

Components never hold a connection themselves: they open a scoped
transaction with `Storage.transaction()` and talk to the per-entity
drivers exposed on the yielded session. The transaction commits when the
block exits normally and rolls back on any exception.
"""

from abc import ABC, abstractmethod
from typing import AsyncContextManager, Dict, List, Optional, Sequence

from ..menus.models import (
    Category, Favorite, FavoriteMenuRow, Genre, MenuRow, Relation, User
)


class UniqueViolation(Exception):
    """A write collided with a unique constraint."""

    def __init__(self, constraint: Optional[str] = None):
        self.constraint = constraint
        super().__init__(f"Unique constraint violated: {constraint or 'unknown'}")


class MenuDriver(ABC):
    """Menu rows, reference rows and menu association rows."""

    @abstractmethod
    async def list_menus(self) -> List[MenuRow]:
        ...

    @abstractmethod
    async def get_menu(self, menu_id: int) -> Optional[MenuRow]:
        ...

    @abstractmethod
    async def lock_menu(self, menu_id: int) -> Optional[MenuRow]:
        """Read the menu row and hold a write lock on it until the transaction ends."""

    @abstractmethod
    async def insert_menu(self, menu_name: str) -> MenuRow:
        ...

    @abstractmethod
    async def update_menu_name(self, menu_id: int, menu_name: str) -> None:
        ...

    @abstractmethod
    async def delete_menu(self, menu_id: int) -> bool:
        """Delete the menu row. Returns False if no row matched."""

    @abstractmethod
    async def find_reference_ids(self, relation: Relation, ids: Sequence[int]) -> List[int]:
        """Return the subset of `ids` that exist in the relation's reference table."""

    @abstractmethod
    async def linked_ids(self, relation: Relation, menu_ids: Sequence[int]) -> Dict[int, List[int]]:
        """Return associated reference ids per menu, for all `menu_ids` in one read."""

    @abstractmethod
    async def add_links(self, relation: Relation, menu_id: int, ids: Sequence[int]) -> None:
        ...

    @abstractmethod
    async def replace_links(self, relation: Relation, menu_id: int, ids: Sequence[int]) -> None:
        """Make the menu's association set exactly `ids` (which must exist)."""

    @abstractmethod
    async def clear_links(self, menu_id: int) -> None:
        """Remove every association row of the menu."""

    @abstractmethod
    async def list_genres(self) -> List[Genre]:
        ...

    @abstractmethod
    async def list_categories(self) -> List[Category]:
        ...


class UserDriver(ABC):
    """User rows and their favorites."""

    @abstractmethod
    async def get_user_by_subject(self, auth0_sub: str) -> Optional[User]:
        ...

    @abstractmethod
    async def insert_user(self, auth0_sub: str) -> User:
        """Insert a user. Raises UniqueViolation if the subject exists."""

    @abstractmethod
    async def get_favorite(self, favorite_id: int) -> Optional[Favorite]:
        ...

    @abstractmethod
    async def find_favorite(self, user_id: int, menu_id: int) -> Optional[Favorite]:
        ...

    @abstractmethod
    async def insert_favorite(self, user_id: int, menu_id: int) -> Favorite:
        """Insert a favorite. Raises UniqueViolation if the pair exists."""

    @abstractmethod
    async def delete_favorite(self, favorite_id: int) -> bool:
        ...

    @abstractmethod
    async def delete_favorites_for_menu(self, menu_id: int) -> int:
        ...

    @abstractmethod
    async def list_favorite_menus(self, user_id: int) -> List[FavoriteMenuRow]:
        """Favorites inner-joined with menus, newest first."""


class StorageSession:
    """Drivers bound to one open transaction."""

    def __init__(self, menus: MenuDriver, users: UserDriver):
        self.menus = menus
        self.users = users


class Storage(ABC):
    """Transactional store shared by all components."""

    async def start(self) -> None:
        """Open connections. No-op by default."""

    async def stop(self) -> None:
        """Close connections. No-op by default."""

    async def check_health(self) -> bool:
        return True

    @abstractmethod
    def transaction(self) -> AsyncContextManager[StorageSession]:
        """Open a scoped transaction."""

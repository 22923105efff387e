"""
Shared fixtures for menu service tests.

`InMemoryStorage` implements the storage drivers over plain dicts with the
same unique constraints as the database schema. Each transaction is
serialized behind a lock and snapshots the state first, so an exception
inside the block restores everything written by it.
"""

import asyncio
import copy
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt
from jose.utils import long_to_base64

from shared.errors import KeyNotFoundError, StorageError
from service_menu.app.menus.models import (
    Category, Favorite, FavoriteMenuRow, Genre, MenuRow, Relation, User
)
from service_menu.app.persistence.base import (
    MenuDriver, Storage, StorageSession, UniqueViolation, UserDriver
)


AUDIENCE = "https://menu-api.example.com"
DOMAIN = "menu-test.auth0.example.com"
KID = "test-key-1"

EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


class MemoryState:
    """Tables of the in-memory store."""

    def __init__(self):
        self.menus: Dict[int, str] = {}
        self.genres: Dict[int, str] = {}
        self.categories: Dict[int, str] = {}
        self.links: Dict[Relation, set] = {Relation.GENRES: set(), Relation.CATEGORIES: set()}
        self.users: Dict[int, User] = {}
        self.favorites: Dict[int, Favorite] = {}
        self.sequences: Dict[str, int] = {"menu": 0, "user": 0, "favorite": 0, "tick": 0}

    def next_id(self, name: str) -> int:
        self.sequences[name] += 1
        return self.sequences[name]

    def now(self) -> datetime:
        # strictly increasing timestamps keep "newest first" deterministic
        return EPOCH + timedelta(seconds=self.next_id("tick"))


class InMemoryMenuDriver(MenuDriver):

    def __init__(self, storage: "InMemoryStorage"):
        self._storage = storage

    @property
    def _state(self) -> MemoryState:
        return self._storage.state

    def _references(self, relation: Relation) -> Dict[int, str]:
        return self._state.genres if relation == Relation.GENRES else self._state.categories

    async def list_menus(self) -> List[MenuRow]:
        self._storage.check_fault("list_menus")
        return [MenuRow(menu_id, name) for menu_id, name in sorted(self._state.menus.items())]

    async def get_menu(self, menu_id: int) -> Optional[MenuRow]:
        self._storage.check_fault("get_menu")
        name = self._state.menus.get(menu_id)
        return MenuRow(menu_id, name) if name is not None else None

    async def lock_menu(self, menu_id: int) -> Optional[MenuRow]:
        # transactions are already serialized by the store's lock
        return await self.get_menu(menu_id)

    async def insert_menu(self, menu_name: str) -> MenuRow:
        self._storage.check_fault("insert_menu")
        menu_id = self._state.next_id("menu")
        self._state.menus[menu_id] = menu_name
        return MenuRow(menu_id, menu_name)

    async def update_menu_name(self, menu_id: int, menu_name: str) -> None:
        self._storage.check_fault("update_menu_name")
        if menu_id in self._state.menus:
            self._state.menus[menu_id] = menu_name

    async def delete_menu(self, menu_id: int) -> bool:
        self._storage.check_fault("delete_menu")
        return self._state.menus.pop(menu_id, None) is not None

    async def find_reference_ids(self, relation: Relation, ids) -> List[int]:
        self._storage.check_fault("find_reference_ids")
        references = self._references(relation)
        return sorted(i for i in set(ids) if i in references)

    async def linked_ids(self, relation: Relation, menu_ids) -> Dict[int, List[int]]:
        self._storage.check_fault("linked_ids")
        self._storage.reads["linked_ids"] += 1
        links: Dict[int, List[int]] = {menu_id: [] for menu_id in menu_ids}
        for menu_id, ref_id in sorted(self._state.links[relation]):
            if menu_id in links:
                links[menu_id].append(ref_id)
        return links

    async def add_links(self, relation: Relation, menu_id: int, ids) -> None:
        self._storage.check_fault("add_links")
        for ref_id in ids:
            self._state.links[relation].add((menu_id, ref_id))

    async def replace_links(self, relation: Relation, menu_id: int, ids) -> None:
        self._storage.check_fault("replace_links")
        others = {pair for pair in self._state.links[relation] if pair[0] != menu_id}
        self._state.links[relation] = others | {(menu_id, ref_id) for ref_id in ids}

    async def clear_links(self, menu_id: int) -> None:
        self._storage.check_fault("clear_links")
        for relation, pairs in self._state.links.items():
            self._state.links[relation] = {pair for pair in pairs if pair[0] != menu_id}

    async def list_genres(self) -> List[Genre]:
        return [Genre(genre_id, name) for genre_id, name in sorted(self._state.genres.items())]

    async def list_categories(self) -> List[Category]:
        return [Category(category_id, name) for category_id, name in sorted(self._state.categories.items())]


class InMemoryUserDriver(UserDriver):

    def __init__(self, storage: "InMemoryStorage"):
        self._storage = storage

    @property
    def _state(self) -> MemoryState:
        return self._storage.state

    async def get_user_by_subject(self, auth0_sub: str) -> Optional[User]:
        self._storage.check_fault("get_user_by_subject")
        for user in self._state.users.values():
            if user.auth0_sub == auth0_sub:
                return user
        return None

    async def insert_user(self, auth0_sub: str) -> User:
        self._storage.check_fault("insert_user")
        if any(user.auth0_sub == auth0_sub for user in self._state.users.values()):
            raise UniqueViolation("users_auth0_sub_key")
        now = self._state.now()
        user = User(self._state.next_id("user"), auth0_sub, now, now)
        self._state.users[user.user_id] = user
        return user

    async def get_favorite(self, favorite_id: int) -> Optional[Favorite]:
        return self._state.favorites.get(favorite_id)

    async def find_favorite(self, user_id: int, menu_id: int) -> Optional[Favorite]:
        for favorite in self._state.favorites.values():
            if favorite.user_id == user_id and favorite.menu_id == menu_id:
                return favorite
        return None

    async def insert_favorite(self, user_id: int, menu_id: int) -> Favorite:
        self._storage.check_fault("insert_favorite")
        if await self.find_favorite(user_id, menu_id) is not None:
            raise UniqueViolation("idx_favorites_user_menu")
        favorite = Favorite(self._state.next_id("favorite"), user_id, menu_id, self._state.now())
        self._state.favorites[favorite.favorite_id] = favorite
        return favorite

    async def delete_favorite(self, favorite_id: int) -> bool:
        self._storage.check_fault("delete_favorite")
        return self._state.favorites.pop(favorite_id, None) is not None

    async def delete_favorites_for_menu(self, menu_id: int) -> int:
        self._storage.check_fault("delete_favorites_for_menu")
        doomed = [f.favorite_id for f in self._state.favorites.values() if f.menu_id == menu_id]
        for favorite_id in doomed:
            del self._state.favorites[favorite_id]
        return len(doomed)

    async def list_favorite_menus(self, user_id: int) -> List[FavoriteMenuRow]:
        rows = [
            FavoriteMenuRow(f.favorite_id, f.user_id, f.menu_id, self._state.menus[f.menu_id], f.created_at)
            for f in self._state.favorites.values()
            if f.user_id == user_id and f.menu_id in self._state.menus
        ]
        return sorted(rows, key=lambda row: (row.created_at, row.favorite_id), reverse=True)


class InMemoryStorage(Storage):
    """Transactional in-memory store for tests."""

    def __init__(self):
        self.state = MemoryState()
        self.faults: Dict[str, List[Any]] = {}
        self.reads: Dict[str, int] = {"linked_ids": 0}
        self.transactions = 0
        self.rollbacks = 0
        self.healthy = True
        self._lock = asyncio.Lock()

    def check_fault(self, operation: str) -> None:
        fault = self.faults.get(operation)
        if fault is None:
            return
        if fault[1] > 0:
            fault[1] -= 1
            return
        raise fault[0]

    def fail(self, operation: str, error: Optional[Exception] = None, after: int = 0) -> None:
        """Make calls to `operation` raise once `after` calls have succeeded."""
        self.faults[operation] = [error or StorageError("injected failure"), after]

    async def check_health(self) -> bool:
        return self.healthy

    @asynccontextmanager
    async def transaction(self):
        # yield once so concurrent callers interleave between transactions
        await asyncio.sleep(0)
        async with self._lock:
            self.transactions += 1
            snapshot = copy.deepcopy(self.state)
            try:
                yield StorageSession(InMemoryMenuDriver(self), InMemoryUserDriver(self))
            except BaseException:
                self.state = snapshot
                self.rollbacks += 1
                raise

    # Seeding helpers, outside any transaction

    def add_genre(self, genre_id: int, name: str) -> None:
        self.state.genres[genre_id] = name

    def add_category(self, category_id: int, name: str) -> None:
        self.state.categories[category_id] = name

    def add_menu(self, name: str, genre_ids=(), category_ids=()) -> int:
        menu_id = self.state.next_id("menu")
        self.state.menus[menu_id] = name
        for genre_id in genre_ids:
            self.state.links[Relation.GENRES].add((menu_id, genre_id))
        for category_id in category_ids:
            self.state.links[Relation.CATEGORIES].add((menu_id, category_id))
        return menu_id

    def add_user(self, subject: str) -> User:
        now = self.state.now()
        user = User(self.state.next_id("user"), subject, now, now)
        self.state.users[user.user_id] = user
        return user

    def add_favorite(self, user_id: int, menu_id: int) -> Favorite:
        favorite = Favorite(self.state.next_id("favorite"), user_id, menu_id, self.state.now())
        self.state.favorites[favorite.favorite_id] = favorite
        return favorite

    def link_ids(self, relation: Relation, menu_id: int) -> List[int]:
        return sorted(ref for mid, ref in self.state.links[relation] if mid == menu_id)


class StaticKeyResolver:
    """Key resolver over a fixed kid -> public key map."""

    def __init__(self, keys: Dict[str, Any]):
        self.keys = keys
        self.calls: List[str] = []

    async def get_public_key(self, kid: str):
        self.calls.append(kid)
        if kid not in self.keys:
            raise KeyNotFoundError(kid)
        return self.keys[kid]


def public_jwk(private_key: rsa.RSAPrivateKey, kid: str) -> Dict[str, str]:
    """JWK entry for the public half of `private_key`."""
    numbers = private_key.public_key().public_numbers()
    return {
        "kty": "RSA",
        "kid": kid,
        "use": "sig",
        "alg": "RS256",
        "n": long_to_base64(numbers.n).decode("ascii"),
        "e": long_to_base64(numbers.e).decode("ascii"),
    }


def private_pem(private_key: rsa.RSAPrivateKey) -> str:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    ).decode("ascii")


@pytest.fixture(scope="session")
def signing_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_signing_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def jwks_document(signing_key) -> Dict[str, Any]:
    return {"keys": [public_jwk(signing_key, KID)]}


@pytest.fixture
def key_resolver(signing_key) -> StaticKeyResolver:
    return StaticKeyResolver({KID: signing_key.public_key()})


@pytest.fixture
def make_token(signing_key):
    """Build a signed token; claim and header defaults describe a valid token."""

    def _make(subject: Optional[str] = "auth0|user-1", *, key=None, kid: Optional[str] = KID,
              algorithm: str = "RS256", omit=(), **claims) -> str:
        payload: Dict[str, Any] = {
            "sub": subject,
            "aud": AUDIENCE,
            "iss": f"https://{DOMAIN}/",
            "iat": int(time.time()),
            "exp": int(time.time()) + 3600,
        }
        payload.update(claims)
        for name in omit:
            payload.pop(name, None)
        headers = {"kid": kid} if kid is not None else {}
        return jwt.encode(payload, private_pem(key or signing_key), algorithm=algorithm, headers=headers)

    return _make


@pytest.fixture
def storage() -> InMemoryStorage:
    """Store seeded with three genres and three categories."""
    store = InMemoryStorage()
    for genre_id, name in [(1, "Japanese"), (2, "Western"), (3, "Chinese")]:
        store.add_genre(genre_id, name)
    for category_id, name in [(1, "Main"), (2, "Side"), (3, "Soup")]:
        store.add_category(category_id, name)
    return store

"""
Menu, reference-data and favorite models.
"""

from typing import List, Optional
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


# Row ids are PostgreSQL SERIAL (int4) keys.
MAX_ID = 2**31 - 1


class Relation(str, Enum):
    """Many-to-many association sets owned by a menu."""
    GENRES = "genres"
    CATEGORIES = "categories"


@dataclass
class MenuRow:
    """Menu row without its associations."""
    menu_id: int
    menu_name: str


@dataclass
class Menu:
    """Menu with its genre and category id sets."""
    menu_id: int
    menu_name: str
    genre_ids: List[int] = field(default_factory=list)
    category_ids: List[int] = field(default_factory=list)


@dataclass
class Genre:
    genre_id: int
    genre_name: str


@dataclass
class Category:
    category_id: int
    category_name: str


@dataclass
class User:
    """Internal user keyed by the identity provider's subject."""
    user_id: int
    auth0_sub: str
    created_at: datetime
    updated_at: datetime


@dataclass
class Favorite:
    favorite_id: int
    user_id: int
    menu_id: int
    created_at: datetime


@dataclass
class FavoriteMenuRow:
    """Favorite joined with the name of its menu."""
    favorite_id: int
    user_id: int
    menu_id: int
    menu_name: str
    created_at: datetime


@dataclass
class FavoriteDetail:
    """Favorite with full menu detail."""
    favorite_id: int
    menu_id: int
    menu_name: str
    created_at: datetime
    genre_ids: List[int] = field(default_factory=list)
    category_ids: List[int] = field(default_factory=list)


@dataclass
class FavoriteStatus:
    is_favorite: bool
    favorite_id: Optional[int] = None


# API models


class MenuCreateRequest(BaseModel):
    """Request model for creating a menu."""
    menu_name: str = Field(..., min_length=1, max_length=50, description="Menu name")
    genre_ids: List[int] = Field(default_factory=list, description="Genre IDs to associate")
    category_ids: List[int] = Field(default_factory=list, description="Category IDs to associate")


class MenuUpdateRequest(MenuCreateRequest):
    """Request model for updating a menu; association sets are replaced."""


class GenreRelationsRequest(BaseModel):
    genre_ids: List[int] = Field(..., description="Complete genre ID set for the menu")


class CategoryRelationsRequest(BaseModel):
    category_ids: List[int] = Field(..., description="Complete category ID set for the menu")


class MenuResponse(BaseModel):
    menu_id: int
    menu_name: str
    genre_ids: List[int]
    category_ids: List[int]


class GenreResponse(BaseModel):
    genre_id: int
    genre_name: str


class CategoryResponse(BaseModel):
    category_id: int
    category_name: str


class UserResponse(BaseModel):
    user_id: int
    auth0_sub: str
    created_at: datetime
    updated_at: datetime


class AddFavoriteRequest(BaseModel):
    menu_id: int = Field(..., ge=1, le=MAX_ID, description="Menu to add to favorites")


class FavoriteResponse(BaseModel):
    favorite_id: int
    user_id: int
    menu_id: int
    created_at: datetime


class FavoriteDetailResponse(BaseModel):
    favorite_id: int
    menu_id: int
    menu_name: str
    genre_ids: List[int]
    category_ids: List[int]
    created_at: datetime


class FavoriteListResponse(BaseModel):
    favorites: List[FavoriteDetailResponse]


class FavoriteStatusResponse(BaseModel):
    is_favorite: bool
    favorite_id: Optional[int] = None


class DeleteResponse(BaseModel):
    success: bool = True

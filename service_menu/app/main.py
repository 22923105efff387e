"""
Menu service: menus, reference data and per-user favorites over HTTP.
"""

from dataclasses import asdict
from typing import List, Optional

from fastapi import Depends, Header, Path, Response

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.metrics import MetricsCollector

from .identity import IdentityResolver, SessionAuthenticator, SessionContext
from .jwks import JWKSClient
from .menus.engine import RelationshipEngine
from .menus.queries import QueryAssembler
from .menus.models import (
    AddFavoriteRequest, CategoryRelationsRequest, CategoryResponse, DeleteResponse,
    FavoriteListResponse, FavoriteResponse, FavoriteStatusResponse, GenreRelationsRequest,
    GenreResponse, MAX_ID, MenuCreateRequest, MenuResponse, MenuUpdateRequest, UserResponse
)
from .persistence.base import Storage
from .persistence.postgres import PostgreSQLStorage
from .validation import TokenValidator
from .validation.token_validator import KeyResolver


class MenuService(BaseService):
    """Menu service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        storage: Optional[Storage] = None,
        key_resolver: Optional[KeyResolver] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        super().__init__("menu", 8080, config=config, metrics=metrics)

        self.storage = storage or PostgreSQLStorage(
            self.config.postgres_dsn,
            min_size=self.config.postgres_min_pool_size,
            max_size=self.config.postgres_max_pool_size,
            command_timeout=self.config.postgres_command_timeout
        )
        self.key_resolver = key_resolver or JWKSClient(
            self.config.auth0_domain,
            cache_ttl=self.config.jwks_cache_ttl,
            http_timeout=self.config.http_timeout,
            metrics=self.metrics
        )

        self.token_validator = TokenValidator(
            self.key_resolver, self.config.auth0_audience, metrics=self.metrics
        )
        self.identity_resolver = IdentityResolver(self.storage, metrics=self.metrics)
        self.authenticator = SessionAuthenticator(self.token_validator, self.identity_resolver)
        self.relations = RelationshipEngine(self.storage, metrics=self.metrics)
        self.queries = QueryAssembler(self.storage)

        self._setup_menu_routes()

    def _setup_menu_routes(self):
        """Set up /v1 routes."""

        async def current_session(authorization: Optional[str] = Header(default=None)) -> SessionContext:
            return await self.authenticator.authenticate(authorization)

        @self.app.get("/v1/ping")
        async def ping():
            return {"message": "pong"}

        # Menus

        @self.app.get("/v1/menus", response_model=List[MenuResponse])
        async def list_menus():
            menus = await self.queries.list_menus()
            return [MenuResponse(**asdict(menu)) for menu in menus]

        @self.app.post("/v1/menus", response_model=MenuResponse, status_code=201)
        async def create_menu(request: MenuCreateRequest):
            """Create a menu; unknown genre/category ids are ignored."""
            menu = await self.relations.create_menu(
                request.menu_name, request.genre_ids, request.category_ids
            )
            return MenuResponse(**asdict(menu))

        @self.app.put("/v1/menus/{menu_id}", response_model=MenuResponse)
        async def update_menu(
            request: MenuUpdateRequest, menu_id: int = Path(..., ge=1, le=MAX_ID)
        ):
            """Rename a menu and replace both association sets."""
            menu = await self.relations.update_menu(
                menu_id, request.menu_name, request.genre_ids, request.category_ids
            )
            return MenuResponse(**asdict(menu))

        @self.app.delete("/v1/menus/{menu_id}", response_model=DeleteResponse)
        async def delete_menu(menu_id: int = Path(..., ge=1, le=MAX_ID)):
            await self.relations.delete_menu(menu_id)
            return DeleteResponse()

        @self.app.patch("/v1/menus/{menu_id}/genres", response_model=MenuResponse)
        async def update_menu_genres(
            request: GenreRelationsRequest, menu_id: int = Path(..., ge=1, le=MAX_ID)
        ):
            menu = await self.relations.update_genre_relations(menu_id, request.genre_ids)
            return MenuResponse(**asdict(menu))

        @self.app.patch("/v1/menus/{menu_id}/categories", response_model=MenuResponse)
        async def update_menu_categories(
            request: CategoryRelationsRequest, menu_id: int = Path(..., ge=1, le=MAX_ID)
        ):
            menu = await self.relations.update_category_relations(menu_id, request.category_ids)
            return MenuResponse(**asdict(menu))

        # Reference data

        @self.app.get("/v1/genres", response_model=List[GenreResponse])
        async def list_genres():
            genres = await self.queries.list_genres()
            return [GenreResponse(**asdict(genre)) for genre in genres]

        @self.app.get("/v1/categories", response_model=List[CategoryResponse])
        async def list_categories():
            categories = await self.queries.list_categories()
            return [CategoryResponse(**asdict(category)) for category in categories]

        # Users and favorites

        @self.app.post("/v1/users", response_model=UserResponse)
        async def create_or_get_user(response: Response, session: SessionContext = Depends(current_session)):
            """Return the caller's user record, creating it on first call."""
            response.status_code = 201 if session.is_new_user else 200
            return UserResponse(**asdict(session.user))

        @self.app.get("/v1/favorites", response_model=FavoriteListResponse)
        async def list_favorites(session: SessionContext = Depends(current_session)):
            favorites = await self.queries.list_favorites(session.user_id)
            return FavoriteListResponse(favorites=[asdict(favorite) for favorite in favorites])

        @self.app.post("/v1/favorites", response_model=FavoriteResponse, status_code=201)
        async def add_favorite(request: AddFavoriteRequest, session: SessionContext = Depends(current_session)):
            favorite = await self.relations.add_favorite(session.user_id, request.menu_id)
            return FavoriteResponse(**asdict(favorite))

        @self.app.get("/v1/favorites/{menu_id}/status", response_model=FavoriteStatusResponse)
        async def favorite_status(
            menu_id: int = Path(..., ge=1, le=MAX_ID), session: SessionContext = Depends(current_session)
        ):
            status = await self.queries.favorite_status(session.user_id, menu_id)
            return FavoriteStatusResponse(**asdict(status))

        @self.app.delete("/v1/favorites/{menu_id}", response_model=DeleteResponse)
        async def remove_favorite(
            menu_id: int = Path(..., ge=1, le=MAX_ID), session: SessionContext = Depends(current_session)
        ):
            await self.relations.remove_favorite(session.user_id, menu_id)
            return DeleteResponse()

        @self.app.delete("/v1/favorites/id/{favorite_id}", response_model=DeleteResponse)
        async def remove_favorite_by_id(
            favorite_id: int = Path(..., ge=1, le=MAX_ID), session: SessionContext = Depends(current_session)
        ):
            """Remove a favorite by id; callers may only remove their own."""
            await self.relations.remove_favorite_by_id(favorite_id, session.user_id)
            return DeleteResponse()

    async def _check_dependencies(self):
        """Check menu service dependencies."""
        dependencies = {}

        try:
            dependencies["database"] = "ok" if await self.storage.check_health() else "error"
        except Exception:
            dependencies["database"] = "error"

        return dependencies

    async def startup(self):
        """Start menu service components."""
        missing = self.config.missing_auth_settings()
        if missing:
            self.logger.warning("Identity provider not configured; protected routes will reject requests",
                                missing=missing)
        await self.storage.start()
        self.logger.info("Menu service started")

    async def shutdown(self):
        """Stop menu service components."""
        await self.storage.stop()
        close = getattr(self.key_resolver, "close", None)
        if close is not None:
            await close()
        self.logger.info("Menu service stopped")


def create_app():
    """Create menu service application."""
    service = MenuService()
    return service.app


if __name__ == "__main__":
    service = MenuService()
    service.run()

"""
Request session context for protected routes.
"""

from dataclasses import dataclass
from typing import Optional

from shared.logging import get_logger, set_user_context
from ..menus.models import User
from ..validation.token_validator import TokenValidator
from .resolver import IdentityResolver


@dataclass(frozen=True)
class SessionContext:
    """Authenticated caller derived from a verified token."""

    user_id: int
    subject: str
    user: User
    is_new_user: bool = False


class SessionAuthenticator:
    """Verifies the bearer token, then resolves the caller's user record.

    Verification finishes before storage is touched, so no transaction is
    held across the key set fetch.
    """

    def __init__(self, token_validator: TokenValidator, identity_resolver: IdentityResolver):
        self.token_validator = token_validator
        self.identity_resolver = identity_resolver
        self.logger = get_logger("menu.session")

    async def authenticate(self, authorization: Optional[str]) -> SessionContext:
        subject = await self.token_validator.verify_authorization(authorization)
        user, is_new = await self.identity_resolver.ensure_user(subject)

        set_user_context(user_id=user.user_id, subject=subject)
        self.logger.debug("Request authenticated", user_id=user.user_id, is_new_user=is_new)
        return SessionContext(user_id=user.user_id, subject=subject, user=user, is_new_user=is_new)

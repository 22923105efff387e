"""
Maps verified subjects to internal user records.
"""

from typing import Optional, Tuple

from shared.errors import DuplicateSubjectError, StorageError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..menus.models import User
from ..persistence.base import Storage, UniqueViolation


class IdentityResolver:
    """Idempotent upsert of users keyed by the identity provider's subject."""

    def __init__(self, storage: Storage, metrics: Optional[MetricsCollector] = None):
        self.storage = storage
        self.metrics = metrics
        self.logger = get_logger("menu.identity")

    async def get_user(self, subject: str) -> Optional[User]:
        async with self.storage.transaction() as tx:
            return await tx.users.get_user_by_subject(subject)

    async def resolve_or_create(self, subject: str) -> Tuple[User, bool]:
        """Return (user, is_new) for `subject`, creating the user on first sight.

        Lookup and insert run in separate transactions. If a concurrent
        request inserts the same subject in between, the unique constraint
        rejects our insert and DuplicateSubjectError is raised; the row now
        exists and can be re-read.
        """
        user = await self.get_user(subject)
        if user is not None:
            return user, False

        try:
            async with self.storage.transaction() as tx:
                user = await tx.users.insert_user(subject)
        except UniqueViolation as e:
            self.logger.info("Lost user creation race", subject=subject)
            raise DuplicateSubjectError(subject) from e

        self.logger.info("User created", user_id=user.user_id, subject=subject)
        if self.metrics:
            self.metrics.record_user_created()
        return user, True

    async def ensure_user(self, subject: str) -> Tuple[User, bool]:
        """resolve_or_create, recovering from a lost creation race by re-reading."""
        try:
            return await self.resolve_or_create(subject)
        except DuplicateSubjectError:
            user = await self.get_user(subject)
            if user is None:
                raise StorageError("User vanished after duplicate subject", {"subject": subject})
            return user, False

"""
Identity package: verified subject -> internal user -> session context.
"""

from .resolver import IdentityResolver
from .session import SessionAuthenticator, SessionContext

__all__ = ["IdentityResolver", "SessionAuthenticator", "SessionContext"]

from account_lifecycle.db.base import Base  # noqa: F401
from account_lifecycle.models.user import Profile, User, UserIdentity  # noqa: F401
from account_lifecycle.models.deletion import AccountDeletionRequest  # noqa: F401

__all__ = [
    "Base",
    "User",
    "UserIdentity",
    "Profile",
    "AccountDeletionRequest",
]

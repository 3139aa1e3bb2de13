"""
Values threaded through every handler call.
"""
from dataclasses import dataclass
from typing import Optional

from database import Role


@dataclass(frozen=True)
class CallerContext:
    """Who is calling. ``user_id`` is None for anonymous requests."""

    user_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)


@dataclass(frozen=True)
class CallerProfile:
    """A resolved directory entry. Only built for recognised roles."""

    id: str
    role: Role
    email: Optional[str] = None
    full_name: Optional[str] = None
    institution_id: Optional[str] = None

    def has_role(self, *roles: Role) -> bool:
        return self.role in roles

    @property
    def is_master(self) -> bool:
        return self.role == Role.MASTER

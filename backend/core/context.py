from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends

from core.auth import current_active_user
from core.errors import NotAuthorized
from db.database import User


@dataclass(frozen=True)
class ActorContext:
    """Who is acting, passed explicitly into every ledger operation."""

    user_id: UUID
    role: str
    organization_id: UUID

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def require_admin(self, action: str) -> None:
        if not self.is_admin:
            raise NotAuthorized(f"Only admins can {action}", user_id=self.user_id)

    @classmethod
    def from_user(cls, user: User) -> "ActorContext":
        if user.organization_id is None:
            raise NotAuthorized("User does not belong to an organization", user_id=user.id)
        return cls(user_id=user.id, role=user.role or "user", organization_id=user.organization_id)


async def get_actor_context(user: User = Depends(current_active_user)) -> ActorContext:
    return ActorContext.from_user(user)

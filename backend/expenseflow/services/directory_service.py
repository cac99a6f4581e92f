"""Directory Service - Approver lookup and manager resolution

Answers the questions the approval engine asks about people: who is
active, who manages whom, who the tenant's admins are.
"""
from typing import List, Optional

from ..domain.models import User, ActorContext
from ..domain.enums import UserRole
from ..domain.errors import AuthenticationError
from ..repositories.user_repo import UserRepository
from ..utils.logger import get_logger

logger = get_logger(__name__)


class DirectoryService:
    """Service for directory operations backed by the users collection"""

    def __init__(self, user_repo: Optional[UserRepository] = None):
        self.user_repo = user_repo or UserRepository()

    def get_user(self, user_id: str) -> Optional[User]:
        return self.user_repo.get_user(user_id)

    def lookup_active_users(self, user_ids: List[str], tenant_id: str) -> List[User]:
        """Active users of the tenant, in the order of `user_ids`; unknown IDs are dropped"""
        users = self.user_repo.find_active_by_ids(user_ids, tenant_id)
        if len(users) < len(set(user_ids)):
            found = {u.user_id for u in users}
            logger.warning(
                "Skipping unknown or inactive approvers",
                extra={"tenant_id": tenant_id, "details": [i for i in user_ids if i not in found]}
            )
        return users

    def lookup_manager(self, user_id: str) -> Optional[User]:
        """The user's manager, if set, active and in the same tenant"""
        user = self.user_repo.get_user(user_id)
        if not user or not user.manager_id:
            return None

        manager = self.user_repo.get_user(user.manager_id)
        if not manager or not manager.is_active or manager.tenant_id != user.tenant_id:
            logger.info(f"No active manager for {user_id}", extra={"tenant_id": user.tenant_id})
            return None
        return manager

    def lookup_admins(self, tenant_id: str) -> List[User]:
        return self.user_repo.find_active_by_roles(tenant_id, [UserRole.ADMIN])

    def list_available_approvers(self, tenant_id: str) -> List[User]:
        """Active managers and admins that can be put on a workflow"""
        return self.user_repo.find_active_by_roles(tenant_id, [UserRole.MANAGER, UserRole.ADMIN])

    def resolve_actor(self, user_id: str) -> ActorContext:
        """Turn a gateway-provided user ID into an actor context"""
        user = self.user_repo.get_user(user_id)
        if not user or not user.is_active:
            raise AuthenticationError("Unknown or inactive user")

        return ActorContext(
            user_id=user.user_id,
            tenant_id=user.tenant_id,
            email=user.email,
            display_name=user.display_name,
            role=user.role
        )

"""User Repository - Read access to the approver directory"""
from typing import Any, Dict, List, Optional
from pymongo.collection import Collection
from pymongo import ASCENDING

from .mongo_client import get_collection
from ..domain.models import User
from ..domain.enums import UserRole
from ..utils.logger import get_logger

logger = get_logger(__name__)


class UserRepository:
    """Repository for directory users"""

    def __init__(self, collection: Optional[Collection] = None):
        self._users: Collection = collection if collection is not None else get_collection("users")

    @staticmethod
    def _to_model(doc: Dict[str, Any]) -> User:
        doc.pop("_id", None)
        return User.model_validate(doc)

    def create_user(self, user: User) -> User:
        doc = user.model_dump()
        doc["_id"] = user.user_id
        self._users.insert_one(doc)
        logger.info(f"Created user: {user.user_id}", extra={"tenant_id": user.tenant_id})
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        doc = self._users.find_one({"user_id": user_id})
        if doc:
            return self._to_model(doc)
        return None

    def find_active_by_ids(self, user_ids: List[str], tenant_id: str) -> List[User]:
        """Active users of the tenant among `user_ids`, in the order given"""
        if not user_ids:
            return []
        cursor = self._users.find({
            "user_id": {"$in": list(user_ids)},
            "tenant_id": tenant_id,
            "is_active": True
        })
        found = {doc["user_id"]: self._to_model(doc) for doc in cursor}
        return [found[user_id] for user_id in dict.fromkeys(user_ids) if user_id in found]

    def find_active_by_roles(self, tenant_id: str, roles: List[UserRole]) -> List[User]:
        cursor = self._users.find({
            "tenant_id": tenant_id,
            "role": {"$in": [role.value for role in roles]},
            "is_active": True
        }).sort([("display_name", ASCENDING), ("user_id", ASCENDING)])
        return [self._to_model(doc) for doc in cursor]

"""Workflow Repository - Data access for approval workflows"""
from typing import Any, Dict, List, Optional
from pymongo.collection import Collection
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError
from pydantic import ValidationError

from .mongo_client import get_collection
from ..domain.models import Workflow
from ..domain.errors import WorkflowNotFoundError, ConcurrencyError, AlreadyExistsError
from ..utils.logger import get_logger
from ..utils.time import utc_now

logger = get_logger(__name__)


class WorkflowRepository:
    """Repository for workflow operations"""

    def __init__(self, collection: Optional[Collection] = None):
        self._workflows: Collection = collection if collection is not None else get_collection("workflows")

    def _to_model(self, doc: Dict[str, Any]) -> Optional[Workflow]:
        doc.pop("_id", None)
        try:
            return Workflow.model_validate(doc)
        except ValidationError as e:
            workflow_id = doc.get("workflow_id", "unknown")
            logger.warning(
                f"Skipping corrupted workflow {workflow_id}",
                extra={"workflow_id": workflow_id, "details": str(e)[:300]}
            )
            return None

    # =========================================================================
    # CRUD
    # =========================================================================

    def create_workflow(self, workflow: Workflow) -> Workflow:
        """Create a new workflow"""
        doc = workflow.model_dump()
        doc["_id"] = workflow.workflow_id

        try:
            self._workflows.insert_one(doc)
        except DuplicateKeyError:
            raise AlreadyExistsError(f"Workflow {workflow.workflow_id} already exists")

        logger.info(
            f"Created workflow: {workflow.workflow_id}",
            extra={"workflow_id": workflow.workflow_id, "tenant_id": workflow.tenant_id}
        )
        return workflow

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        """Get workflow by ID regardless of tenant or active flag"""
        doc = self._workflows.find_one({"workflow_id": workflow_id})
        if doc:
            return self._to_model(doc)
        return None

    def list_workflows(self, tenant_id: str, active_only: bool = True) -> List[Workflow]:
        """
        List a tenant's workflows in a stable order

        Ordered by creation time, then workflow ID, so rule-based selection
        is deterministic.
        """
        query: Dict[str, Any] = {"tenant_id": tenant_id}
        if active_only:
            query["is_active"] = True

        cursor = self._workflows.find(query).sort([("created_at", ASCENDING), ("workflow_id", ASCENDING)])

        workflows = []
        for doc in cursor:
            workflow = self._to_model(doc)
            if workflow:
                workflows.append(workflow)
        return workflows

    def update_workflow(
        self,
        workflow_id: str,
        updates: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> Workflow:
        """
        Update workflow with optimistic concurrency

        Args:
            workflow_id: Workflow ID
            updates: Fields to update
            expected_version: Expected version for optimistic lock
        """
        updates["updated_at"] = utc_now()

        filter_query: Dict[str, Any] = {"workflow_id": workflow_id}
        if expected_version is not None:
            filter_query["version"] = expected_version

        result = self._workflows.find_one_and_update(
            filter_query,
            {"$set": updates, "$inc": {"version": 1}},
            return_document=ReturnDocument.AFTER
        )

        if result is None:
            if expected_version is not None and self._workflows.find_one({"workflow_id": workflow_id}):
                raise ConcurrencyError(
                    f"Workflow {workflow_id} was modified. Please refresh and try again.",
                    details={"expected_version": expected_version}
                )
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")

        logger.info(f"Updated workflow: {workflow_id}", extra={"workflow_id": workflow_id})
        result.pop("_id", None)
        return Workflow.model_validate(result)

    def deactivate_workflow(self, workflow_id: str) -> bool:
        """Soft delete - in-flight expenses keep their reference"""
        result = self._workflows.update_one(
            {"workflow_id": workflow_id},
            {"$set": {"is_active": False, "updated_at": utc_now()}, "$inc": {"version": 1}}
        )
        return result.matched_count > 0

    # =========================================================================
    # Default Workflow
    # =========================================================================

    def get_or_create_default_workflow(self, default: Workflow) -> Workflow:
        """
        Atomically fetch the tenant's default workflow, inserting `default` if absent

        Keyed on (tenant_id, is_default) with $setOnInsert, so concurrent
        callers converge on a single document.
        """
        doc = default.model_dump()
        doc["_id"] = default.workflow_id
        doc.pop("tenant_id")
        doc.pop("is_default")

        try:
            result = self._workflows.find_one_and_update(
                {"tenant_id": default.tenant_id, "is_default": True},
                {"$setOnInsert": doc},
                upsert=True,
                return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            # Lost the upsert race; the winner's document is there now
            result = self._workflows.find_one({"tenant_id": default.tenant_id, "is_default": True})

        result.pop("_id", None)
        return Workflow.model_validate(result)

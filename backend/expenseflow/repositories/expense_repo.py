"""Expense Repository - Data access for expenses and their approval chains

Every write is a compare-and-set on the document `version`, so two approvers
racing on one expense (or an approval racing an escalation append) can never
silently overwrite each other: the loser gets a ConcurrencyError.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from pymongo.collection import Collection
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from .mongo_client import get_collection
from ..domain.models import Expense, ChainEntry
from ..domain.enums import ExpenseStatus, ChainEntryStatus, ACTIONABLE_EXPENSE_STATUSES
from ..domain.errors import ExpenseNotFoundError, ConcurrencyError
from ..utils.logger import get_logger
from ..utils.time import utc_now

logger = get_logger(__name__)


class ExpenseRepository:
    """Repository for expense operations"""

    def __init__(self, collection: Optional[Collection] = None):
        self._expenses: Collection = collection if collection is not None else get_collection("expenses")

    @staticmethod
    def _to_model(doc: Dict[str, Any]) -> Expense:
        doc.pop("_id", None)
        return Expense.model_validate(doc)

    # =========================================================================
    # CRUD
    # =========================================================================

    def create_expense(self, expense: Expense) -> Expense:
        """Create a new expense"""
        # Don't use mode="json" - it converts datetime to strings, breaking sorting
        doc = expense.model_dump()
        doc["_id"] = expense.expense_id

        self._expenses.insert_one(doc)
        logger.info(f"Created expense: {expense.expense_id}", extra={"expense_id": expense.expense_id})
        return expense

    def get_expense(self, expense_id: str) -> Optional[Expense]:
        """Get expense by ID"""
        doc = self._expenses.find_one({"expense_id": expense_id})
        if doc:
            return self._to_model(doc)
        return None

    def get_expense_or_raise(self, expense_id: str, tenant_id: Optional[str] = None) -> Expense:
        """Get expense by ID or raise error; cross-tenant reads look like missing ones"""
        expense = self.get_expense(expense_id)
        if not expense or (tenant_id is not None and expense.tenant_id != tenant_id):
            raise ExpenseNotFoundError(f"Expense {expense_id} not found")
        return expense

    def _compare_and_set(
        self,
        expense_id: str,
        expected_version: int,
        update: Dict[str, Any]
    ) -> Expense:
        update.setdefault("$set", {})["updated_at"] = utc_now()
        update["$inc"] = {"version": 1}

        result = self._expenses.find_one_and_update(
            {"expense_id": expense_id, "version": expected_version},
            update,
            return_document=ReturnDocument.AFTER
        )

        if result is None:
            if self._expenses.find_one({"expense_id": expense_id}):
                raise ConcurrencyError(
                    f"Expense {expense_id} was modified. Please refresh and try again.",
                    details={"expected_version": expected_version}
                )
            raise ExpenseNotFoundError(f"Expense {expense_id} not found")

        return self._to_model(result)

    def update_expense(
        self,
        expense_id: str,
        updates: Dict[str, Any],
        expected_version: int
    ) -> Expense:
        """Update expense fields with optimistic concurrency"""
        expense = self._compare_and_set(expense_id, expected_version, {"$set": updates})
        logger.info(
            f"Updated expense: {expense_id}",
            extra={"expense_id": expense_id, "status": expense.status.value}
        )
        return expense

    def save_chain(
        self,
        expense: Expense,
        updates: Optional[Dict[str, Any]] = None
    ) -> Expense:
        """Persist the full approval chain plus any expense fields, guarded by version"""
        fields = dict(updates or {})
        fields["approval_chain"] = [entry.model_dump() for entry in expense.approval_chain]
        return self.update_expense(expense.expense_id, fields, expected_version=expense.version)

    def append_chain_entries(
        self,
        expense_id: str,
        entries: List[ChainEntry],
        expected_version: int
    ) -> Expense:
        """Append entries without rewriting existing ones"""
        expense = self._compare_and_set(
            expense_id,
            expected_version,
            {"$push": {"approval_chain": {"$each": [entry.model_dump() for entry in entries]}}}
        )
        logger.info(
            f"Appended {len(entries)} chain entries to {expense_id}",
            extra={"expense_id": expense_id, "entry_count": len(entries)}
        )
        return expense

    # =========================================================================
    # Queries
    # =========================================================================

    def find_with_pending_entry(self, tenant_id: str, approver_id: str) -> List[Expense]:
        """Actionable expenses where the approver holds at least one pending entry"""
        cursor = self._expenses.find({
            "tenant_id": tenant_id,
            "status": {"$in": [s.value for s in ACTIONABLE_EXPENSE_STATUSES]},
            "approval_chain": {
                "$elemMatch": {
                    "approver_id": approver_id,
                    "status": ChainEntryStatus.PENDING.value
                }
            }
        }).sort("submitted_at", DESCENDING)

        return [self._to_model(doc) for doc in cursor]

    def list_by_approver(
        self,
        tenant_id: str,
        approver_id: str,
        status: Optional[ExpenseStatus] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[Expense]:
        """Expenses on whose chain the approver appears"""
        query: Dict[str, Any] = {
            "tenant_id": tenant_id,
            "approval_chain.approver_id": approver_id
        }
        if status:
            query["status"] = status.value

        cursor = self._expenses.find(query).sort("updated_at", DESCENDING).skip(skip).limit(limit)
        return [self._to_model(doc) for doc in cursor]

    def list_actionable(
        self,
        limit: int = 500,
        after: Optional[Tuple[datetime, str]] = None
    ) -> List[Expense]:
        """
        One page of expenses still awaiting decisions, oldest submission first

        Pages are keyed on (submitted_at, expense_id); pass the last item's
        key as `after` to read the next page.
        """
        query: Dict[str, Any] = {"status": {"$in": [s.value for s in ACTIONABLE_EXPENSE_STATUSES]}}
        if after:
            submitted_at, expense_id = after
            query["$or"] = [
                {"submitted_at": {"$gt": submitted_at}},
                {"submitted_at": submitted_at, "expense_id": {"$gt": expense_id}},
            ]

        cursor = self._expenses.find(query).sort(
            [("submitted_at", ASCENDING), ("expense_id", ASCENDING)]
        ).limit(limit)
        return [self._to_model(doc) for doc in cursor]

    def _breakdown(self, match: Dict[str, Any]) -> List[Dict[str, Any]]:
        pipeline = [
            {"$match": match},
            {"$group": {"_id": "$status", "count": {"$sum": 1}, "total_amount": {"$sum": "$amount"}}},
            {"$sort": {"_id": 1}},
        ]
        return [
            {"status": row["_id"], "count": row["count"], "total_amount": row["total_amount"]}
            for row in self._expenses.aggregate(pipeline)
        ]

    def get_status_breakdown(self, tenant_id: str, workflow_id: str) -> List[Dict[str, Any]]:
        """Count and total amount per status for expenses routed through a workflow"""
        return self._breakdown({"tenant_id": tenant_id, "workflow_id": workflow_id})

    @staticmethod
    def _approver_match(
        tenant_id: str,
        approver_id: str,
        updated_from: Optional[datetime],
        updated_to: Optional[datetime]
    ) -> Dict[str, Any]:
        match: Dict[str, Any] = {"tenant_id": tenant_id, "approval_chain.approver_id": approver_id}
        window: Dict[str, datetime] = {}
        if updated_from:
            window["$gte"] = updated_from
        if updated_to:
            window["$lte"] = updated_to
        if window:
            match["updated_at"] = window
        return match

    def get_approver_breakdown(
        self,
        tenant_id: str,
        approver_id: str,
        updated_from: Optional[datetime] = None,
        updated_to: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """Count and total amount per status for expenses whose chain includes the approver"""
        return self._breakdown(self._approver_match(tenant_id, approver_id, updated_from, updated_to))

    def count_pending_for_approver(
        self,
        tenant_id: str,
        approver_id: str,
        updated_from: Optional[datetime] = None,
        updated_to: Optional[datetime] = None
    ) -> int:
        """Actionable expenses where the approver still holds a pending entry"""
        query = self._approver_match(tenant_id, approver_id, updated_from, updated_to)
        query.pop("approval_chain.approver_id")
        query["status"] = {"$in": [s.value for s in ACTIONABLE_EXPENSE_STATUSES]}
        query["approval_chain"] = {
            "$elemMatch": {"approver_id": approver_id, "status": ChainEntryStatus.PENDING.value}
        }
        return self._expenses.count_documents(query)

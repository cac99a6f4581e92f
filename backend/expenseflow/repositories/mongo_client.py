"""MongoDB Client - Connection and Collection Management"""
from typing import Any, Dict, List, Optional, Tuple
from pymongo import MongoClient as PyMongoClient
from pymongo.database import Database
from pymongo.collection import Collection
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import ConnectionFailure, PyMongoError

from ..config.settings import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

_client: Optional[PyMongoClient] = None
_database: Optional[Database] = None

IndexSpec = Tuple[Any, Dict[str, Any]]

# collection -> [(keys, create_index options)]
INDEXES: Dict[str, List[IndexSpec]] = {
    "users": [
        ("user_id", {"unique": True}),
        ([("tenant_id", ASCENDING), ("role", ASCENDING), ("is_active", ASCENDING)], {}),
    ],
    "workflows": [
        ("workflow_id", {"unique": True}),
        ([("tenant_id", ASCENDING), ("is_active", ASCENDING), ("created_at", ASCENDING)], {}),
        # at most one default workflow per tenant
        ("tenant_id", {
            "unique": True,
            "name": "uniq_default_workflow_per_tenant",
            "partialFilterExpression": {"is_default": True},
        }),
    ],
    "expenses": [
        ("expense_id", {"unique": True}),
        ([("tenant_id", ASCENDING), ("status", ASCENDING)], {}),
        ([("approval_chain.approver_id", ASCENDING), ("approval_chain.status", ASCENDING)], {}),
        ([("tenant_id", ASCENDING), ("workflow_id", ASCENDING)], {}),
        ([("status", ASCENDING), ("submitted_at", ASCENDING)], {}),
    ],
    "notification_outbox": [
        ("notification_id", {"unique": True}),
        ([("status", ASCENDING), ("next_retry_at", ASCENDING)], {}),
        ("locked_until", {}),
    ],
    "audit_events": [
        ("audit_event_id", {"unique": True}),
        ([("expense_id", ASCENDING), ("timestamp", DESCENDING)], {}),
    ],
}


def get_client() -> PyMongoClient:
    """Connect once per process and verify the server answers"""
    global _client
    if _client is None:
        logger.info(f"Connecting to MongoDB: {settings.mongo_uri}")
        # tz_aware: chain timestamps are compared against aware UTC now
        client = PyMongoClient(
            settings.mongo_uri,
            tz_aware=True,
            serverSelectionTimeoutMS=5000,
            connectTimeoutMS=5000,
        )
        try:
            client.admin.command("ping")
        except ConnectionFailure as e:
            logger.error(f"MongoDB connection failed: {e}")
            raise
        _client = client
    return _client


def get_database() -> Database:
    global _database
    if _database is None:
        _database = get_client()[settings.mongo_db]
    return _database


def get_collection(name: str) -> Collection:
    return get_database()[name]


def close_connection() -> None:
    global _client, _database
    if _client is not None:
        _client.close()
        _client = None
        _database = None
        logger.info("MongoDB connection closed")


def create_indexes() -> None:
    """Create every index in INDEXES; existing ones are left alone"""
    db = get_database()
    for collection_name, specs in INDEXES.items():
        for keys, options in specs:
            db[collection_name].create_index(keys, **options)
    logger.info(f"MongoDB indexes ensured on {len(INDEXES)} collections")


def health_check() -> Dict[str, Any]:
    """Ping the server; never raises"""
    try:
        get_client().admin.command("ping")
        return {"status": "healthy", "database": settings.mongo_db}
    except PyMongoError as e:
        logger.error(f"MongoDB health check failed: {e}")
        return {"status": "unhealthy", "database": settings.mongo_db, "error": str(e)}

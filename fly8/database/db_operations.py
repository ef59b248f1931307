"""
Database operations - generic reads and conditional writes for the engine's collections.

Documents are addressed by their string business id (``commissionId``, ``payoutId`` ...)
rather than ``_id``. Driver connection failures surface as TransientError.
"""
from contextlib import contextmanager
from typing import List, Dict, Optional, Any
from datetime import datetime
from pymongo import ReturnDocument
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError

from fly8.config.database import db_config
from fly8.utils.errors import TransientError


@contextmanager
def datastore_call(collection_name: str):
    try:
        yield
    except (ConnectionFailure, ServerSelectionTimeoutError) as exc:
        raise TransientError(f"Datastore unavailable while accessing '{collection_name}'") from exc


class DBOperations:
    """Generic database operations for MongoDB collections"""

    @staticmethod
    async def get_all(
        collection_name: str,
        filter_query: Dict = None,
        skip: int = 0,
        limit: int = 100,
        sort: Optional[List] = None,
    ) -> List[Dict]:
        """Get documents from a collection with optional filtering and sorting"""
        collection = db_config.get_collection(collection_name)
        filter_query = filter_query or {}
        with datastore_call(collection_name):
            cursor = collection.find(filter_query)
            if sort:
                cursor = cursor.sort(sort)
            cursor = cursor.skip(skip).limit(limit)
            return await cursor.to_list(length=limit)

    @staticmethod
    async def get_one(collection_name: str, filter_query: Dict, sort: Optional[List] = None) -> Optional[Dict]:
        """Get a single document by filter query"""
        collection = db_config.get_collection(collection_name)
        with datastore_call(collection_name):
            if sort:
                return await collection.find_one(filter_query, sort=sort)
            return await collection.find_one(filter_query)

    @staticmethod
    async def create(collection_name: str, document: Dict) -> Dict:
        """Create a new document"""
        collection = db_config.get_collection(collection_name)
        now = datetime.utcnow()
        document.setdefault("createdAt", now)
        document["updatedAt"] = now
        with datastore_call(collection_name):
            result = await collection.insert_one(document)
        document["_id"] = result.inserted_id
        return document

    @staticmethod
    async def update_where(collection_name: str, filter_query: Dict, update: Dict) -> Optional[Dict]:
        """
        Conditional update: apply ``update`` only if ``filter_query`` still matches.
        Returns the updated document, or None when nothing matched.
        """
        collection = db_config.get_collection(collection_name)
        update = dict(update)
        update.setdefault("$set", {})
        update["$set"] = {**update["$set"], "updatedAt": datetime.utcnow()}
        with datastore_call(collection_name):
            return await collection.find_one_and_update(
                filter_query,
                update,
                return_document=ReturnDocument.AFTER,
            )

    @staticmethod
    async def update_many(collection_name: str, filter_query: Dict, update_data: Dict) -> int:
        collection = db_config.get_collection(collection_name)
        with datastore_call(collection_name):
            result = await collection.update_many(filter_query, update_data)
        return result.modified_count

    @staticmethod
    async def count(collection_name: str, filter_query: Dict = None) -> int:
        """Count documents in a collection"""
        collection = db_config.get_collection(collection_name)
        filter_query = filter_query or {}
        with datastore_call(collection_name):
            return await collection.count_documents(filter_query)

    @staticmethod
    async def aggregate(collection_name: str, pipeline: List[Dict]) -> List[Dict]:
        """Execute aggregation pipeline"""
        collection = db_config.get_collection(collection_name)
        with datastore_call(collection_name):
            cursor = collection.aggregate(pipeline)
            return await cursor.to_list(length=None)

    @staticmethod
    async def sum_by_status(collection_name: str, match: Dict[str, Any]) -> Dict[str, Dict[str, float]]:
        """Group ``match``ed documents by status -> {status: {"count", "total"}} over ``amount``."""
        rows = await DBOperations.aggregate(collection_name, [
            {"$match": match},
            {"$group": {"_id": "$status", "count": {"$sum": 1}, "total": {"$sum": "$amount"}}},
        ])
        return {row["_id"]: {"count": row["count"], "total": row["total"]} for row in rows}

db_ops = DBOperations()

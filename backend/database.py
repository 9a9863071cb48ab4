from typing import Any, Dict, Iterator, Optional

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection

from schemas import Bill
from settings import BILLS_COLLECTION, DATABASE_NAME, DATABASE_URL


def connect(url: str = DATABASE_URL) -> MongoClient:
    return MongoClient(url, tz_aware=True)


class BillStore:
    """One document per bill, keyed by bill id, holding the full snapshot."""

    def __init__(self, collection: Collection):
        self.collection = collection

    @classmethod
    def from_client(cls, client: MongoClient, database_name: str = DATABASE_NAME,
                    collection_name: str = BILLS_COLLECTION) -> "BillStore":
        return cls(client[database_name][collection_name])

    def ensure_indexes(self) -> None:
        self.collection.create_index([("patient_ref", ASCENDING)])
        self.collection.create_index([("status", ASCENDING)])
        self.collection.create_index([("created_at", DESCENDING)])

    def ping(self) -> bool:
        self.collection.database.client.admin.command("ping")
        return True

    def insert(self, bill: Bill) -> Bill:
        self.collection.insert_one(bill.to_document())
        return bill

    def load(self, bill_id: str) -> Optional[Bill]:
        doc = self.collection.find_one({"_id": bill_id})
        return Bill.from_document(doc) if doc else None

    def replace_if_version(self, bill: Bill, expected_version: int) -> bool:
        """Write `bill` only if the stored version is still `expected_version`."""
        res = self.collection.replace_one({"_id": bill.id, "version": expected_version}, bill.to_document())
        return res.matched_count == 1

    def find(self, filter_dict: Optional[Dict[str, Any]] = None, limit: int = 0) -> Iterator[Bill]:
        cursor = self.collection.find(filter_dict or {}).sort("created_at", DESCENDING)
        if limit:
            cursor = cursor.limit(limit)
        for doc in cursor:
            yield Bill.from_document(doc)

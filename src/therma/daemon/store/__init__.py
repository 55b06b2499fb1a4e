"""Key-value stores for idempotency records and spend counters."""

from .base import TTL_ATTRIBUTE, Item, KeyValueTable
from .dynamodb import DynamoTable, dynamodb_resource
from .memory import MemoryTable

IDEMPOTENCY_KEY_FIELDS = ("key",)
SPEND_KEY_FIELDS = ("user_id", "date")

__all__ = [
    "TTL_ATTRIBUTE",
    "Item",
    "KeyValueTable",
    "DynamoTable",
    "MemoryTable",
    "dynamodb_resource",
    "IDEMPOTENCY_KEY_FIELDS",
    "SPEND_KEY_FIELDS",
]

"""One active replacement per document.

Locks live in memory by default. Set STYLEGOV_LOCK_USE_DYNAMODB=true to hold
them in DynamoDB with conditional writes, so workers in different processes
see the same locks. DynamoDB locks carry an expiry so a crashed worker cannot
block a document forever.
"""

import os
import time

import boto3
import structlog
from botocore.exceptions import ClientError

from stylegov.utils.exceptions import OperationInProgressError

logger = structlog.get_logger()

DEFAULT_LOCK_TTL_SECONDS = 3600


class DocumentLockRegistry:
    """Tracks which operation currently owns each document.

    Example:
        registry = get_document_lock_registry()
        registry.acquire("doc-1", operation.id)
        try:
            ...
        finally:
            registry.release("doc-1", operation.id)
    """

    def __init__(
        self,
        use_dynamodb: bool | None = None,
        table_name: str | None = None,
        lock_ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
    ):
        """Initialize the registry.

        Args:
            use_dynamodb: Whether to persist locks to DynamoDB.
            table_name: DynamoDB table name for persistence.
            lock_ttl_seconds: Lifetime of a DynamoDB lock.
        """
        self.use_dynamodb = use_dynamodb if use_dynamodb is not None else (
            os.environ.get("STYLEGOV_LOCK_USE_DYNAMODB", "false").lower() == "true"
        )
        self.table_name = table_name or os.environ.get(
            "STYLEGOV_LOCK_TABLE_NAME", "stylegov-operation-locks"
        )
        self.lock_ttl_seconds = lock_ttl_seconds

        self._locks: dict[str, str] = {}
        self._dynamodb = None
        self.logger = logger.bind(service="document_lock_registry")

    @property
    def dynamodb(self):
        """Get DynamoDB resource (lazy initialization)."""
        if self._dynamodb is None:
            self._dynamodb = boto3.resource("dynamodb")
        return self._dynamodb

    def acquire(self, document_id: str, operation_id: str) -> None:
        """Claim a document for an operation.

        Raises:
            OperationInProgressError: If another operation holds the document.
        """
        if self.use_dynamodb:
            self._acquire_dynamodb(document_id, operation_id)
        else:
            holder = self._locks.get(document_id)
            if holder is not None and holder != operation_id:
                raise OperationInProgressError(document_id, holder)
            self._locks[document_id] = operation_id

        self.logger.info(
            "Document locked for replacement",
            document_id=document_id,
            operation_id=operation_id,
        )

    def release(self, document_id: str, operation_id: str) -> None:
        """Release a document. Releasing a lock held by someone else is a no-op."""
        if self.use_dynamodb:
            self._release_dynamodb(document_id, operation_id)
        elif self._locks.get(document_id) == operation_id:
            del self._locks[document_id]

        self.logger.info(
            "Document lock released",
            document_id=document_id,
            operation_id=operation_id,
        )

    def active_operation(self, document_id: str) -> str | None:
        """Get the id of the operation holding a document, if any."""
        if not self.use_dynamodb:
            return self._locks.get(document_id)

        table = self.dynamodb.Table(self.table_name)
        item = table.get_item(Key=self._key(document_id)).get("Item")
        if not item or int(item.get("expires_at", 0)) < int(time.time()):
            return None
        return item.get("operation_id")

    @staticmethod
    def _key(document_id: str) -> dict[str, str]:
        return {"PK": f"DOC#{document_id}", "SK": "REPLACEMENT_LOCK"}

    def _acquire_dynamodb(self, document_id: str, operation_id: str) -> None:
        table = self.dynamodb.Table(self.table_name)
        now = int(time.time())

        try:
            table.put_item(
                Item={
                    **self._key(document_id),
                    "operation_id": operation_id,
                    "acquired_at": now,
                    "expires_at": now + self.lock_ttl_seconds,
                },
                ConditionExpression=(
                    "attribute_not_exists(PK) OR expires_at < :now OR operation_id = :op"
                ),
                ExpressionAttributeValues={":now": now, ":op": operation_id},
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                raise OperationInProgressError(
                    document_id, self.active_operation(document_id)
                ) from e
            raise

    def _release_dynamodb(self, document_id: str, operation_id: str) -> None:
        table = self.dynamodb.Table(self.table_name)

        try:
            table.delete_item(
                Key=self._key(document_id),
                ConditionExpression="operation_id = :op",
                ExpressionAttributeValues={":op": operation_id},
            )
        except ClientError as e:
            if e.response["Error"]["Code"] != "ConditionalCheckFailedException":
                raise
            self.logger.warning(
                "Lock not held by operation, nothing released",
                document_id=document_id,
                operation_id=operation_id,
            )


# Singleton instance
_document_lock_registry: DocumentLockRegistry | None = None


def get_document_lock_registry() -> DocumentLockRegistry:
    """Get the global DocumentLockRegistry instance."""
    global _document_lock_registry
    if _document_lock_registry is None:
        _document_lock_registry = DocumentLockRegistry()
    return _document_lock_registry

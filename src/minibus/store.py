from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, NamedTuple, TypeVar, cast

import boto3
from aws_lambda_powertools import Logger
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

if TYPE_CHECKING:
    # Only for static type checking; not imported at runtime
    from mypy_boto3_dynamodb.client import DynamoDBClient
    from mypy_boto3_dynamodb.service_resource import DynamoDBServiceResource
    from mypy_boto3_dynamodb.service_resource import Table as DynamoDBTable
else:
    # Fallbacks to satisfy annotations at runtime
    DynamoDBClient = Any  # type: ignore[assignment]
    DynamoDBServiceResource = Any  # type: ignore[assignment]
    DynamoDBTable = Any  # type: ignore[assignment]

from .config import TABLE_NAME
from .errors import WriteContentionError

logger = Logger()

_dynamodb: DynamoDBServiceResource = boto3.resource("dynamodb")
_table: DynamoDBTable = _dynamodb.Table(TABLE_NAME)
_client: DynamoDBClient = _dynamodb.meta.client

_serializer = TypeSerializer()

MAX_WRITE_ATTEMPTS = 5
# DynamoDB limits
BATCH_GET_LIMIT = 100
TRANSACTION_LIMIT = 100

_RETRYABLE_CANCELLATIONS = {"ConditionalCheckFailed", "TransactionConflict"}

T = TypeVar("T")


class StaleDocumentError(Exception):
    """The document changed between our read and our conditional write."""


class DocumentWrite(NamedTuple):
    key: str
    body: dict[str, Any]
    # None: the document must not exist yet
    expected_version: int | None


def get_document(key: str) -> dict[str, Any] | None:
    resp = cast(dict[str, Any], _table.get_item(Key={"pk": key}, ConsistentRead=True))
    item = resp.get("Item")
    if not isinstance(item, dict):
        return None
    return dict(item)


def get_documents(keys: Iterable[str]) -> dict[str, dict[str, Any]]:
    """Consistent batch read. Missing keys are absent from the result."""
    pending = list(dict.fromkeys(keys))
    found: dict[str, dict[str, Any]] = {}
    while pending:
        chunk, pending = pending[:BATCH_GET_LIMIT], pending[BATCH_GET_LIMIT:]
        request: dict[str, Any] = {TABLE_NAME: {"Keys": [{"pk": k} for k in chunk], "ConsistentRead": True}}
        while request:
            resp = cast(dict[str, Any], _dynamodb.batch_get_item(RequestItems=request))
            for item in resp.get("Responses", {}).get(TABLE_NAME, []):
                found[str(item["pk"])] = dict(item)
            request = resp.get("UnprocessedKeys") or {}
            if request:
                logger.debug("Retrying unprocessed keys", extra={"count": len(request[TABLE_NAME]["Keys"])})
    return found


def version_of(doc: dict[str, Any] | None) -> int | None:
    if doc is None:
        return None
    return int(doc.get("version", 0))


def _versioned(key: str, body: dict[str, Any], expected_version: int | None) -> tuple[dict[str, Any], dict[str, Any]]:
    item = {
        **body,
        "pk": key,
        "version": (expected_version or 0) + 1,
        "last_updated": datetime.now(UTC).isoformat(),
    }
    if expected_version is None:
        condition: dict[str, Any] = {"ConditionExpression": "attribute_not_exists(pk)"}
    else:
        condition = {
            "ConditionExpression": "#v = :expected",
            "ExpressionAttributeNames": {"#v": "version"},
            "ExpressionAttributeValues": {":expected": expected_version},
        }
    return item, condition


def put_document(key: str, body: dict[str, Any], expected_version: int | None) -> dict[str, Any]:
    """Write ``body`` under ``key`` only if nobody else wrote since ``expected_version``.

    ``expected_version=None`` means the document must not exist yet.
    """
    item, condition = _versioned(key, body, expected_version)
    try:
        _table.put_item(Item=item, **condition)  # type: ignore[arg-type]
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
            raise StaleDocumentError(key) from exc
        raise
    return item


def commit(writes: list[DocumentWrite]) -> None:
    """Write several documents atomically, each guarded by its expected version."""
    if len(writes) > TRANSACTION_LIMIT:
        raise ValueError(f"At most {TRANSACTION_LIMIT} documents per transaction")
    actions: list[dict[str, Any]] = []
    for write in writes:
        item, condition = _versioned(write.key, write.body, write.expected_version)
        put: dict[str, Any] = {
            "TableName": TABLE_NAME,
            "Item": {name: _serializer.serialize(value) for name, value in item.items()},
            "ConditionExpression": condition["ConditionExpression"],
        }
        if "ExpressionAttributeNames" in condition:
            put["ExpressionAttributeNames"] = condition["ExpressionAttributeNames"]
            put["ExpressionAttributeValues"] = {
                name: _serializer.serialize(value) for name, value in condition["ExpressionAttributeValues"].items()
            }
        actions.append({"Put": put})

    try:
        _client.transact_write_items(TransactItems=actions)  # type: ignore[arg-type]
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") == "TransactionCanceledException":
            reasons = {r.get("Code") for r in exc.response.get("CancellationReasons", [])}
            if reasons & _RETRYABLE_CANCELLATIONS:
                raise StaleDocumentError(", ".join(w.key for w in writes)) from exc
        raise


def delete_document(key: str) -> bool:
    """Delete ``key``; False when there was nothing to delete."""
    try:
        _table.delete_item(Key={"pk": key}, ConditionExpression="attribute_exists(pk)")
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
            return False
        raise
    return True


def retry_on_conflict(key: str, attempt_once: Callable[[], T]) -> T:
    """Run a read-check-write cycle until it wins the race or runs out of attempts.

    ``attempt_once`` must read everything it checks afresh on every call and
    raise ``StaleDocumentError`` (via ``put_document``/``commit``) when it loses.
    """
    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        try:
            return attempt_once()
        except StaleDocumentError:
            logger.warning("Concurrent write detected, retrying", extra={"key": key, "attempt": attempt})

    logger.error("Giving up after repeated write conflicts", extra={"key": key})
    raise WriteContentionError()


def modify_document(key: str, mutate: Callable[[dict[str, Any]], T]) -> T:
    """Read-modify-write ``key`` with optimistic concurrency.

    ``mutate`` receives a mutable copy of the stored document (empty dict when
    absent), edits it in place and returns the caller's result. Raising from
    ``mutate`` aborts without writing. A lost race re-reads and calls
    ``mutate`` again on the fresh document.
    """

    def once() -> T:
        doc = get_document(key)
        version = version_of(doc)
        body = dict(doc) if doc is not None else {}
        result = mutate(body)
        put_document(key, body, version)
        return result

    return retry_on_conflict(key, once)


def increment_counter(key: str, attribute: str, ttl: int | None = None) -> int:
    """Atomically add one to ``attribute``; with ``ttl`` the item expires at that epoch."""
    update = "ADD #a :one"
    names = {"#a": attribute}
    values: dict[str, Any] = {":one": 1}
    if ttl is not None:
        update += " SET #ttl = if_not_exists(#ttl, :ttl)"
        names["#ttl"] = "ttl"
        values[":ttl"] = ttl
    resp = cast(
        dict[str, Any],
        _table.update_item(
            Key={"pk": key},
            UpdateExpression=update,
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
            ReturnValues="UPDATED_NEW",
        ),
    )
    attrs = cast(dict[str, Any], resp.get("Attributes") or {})
    return int(attrs.get(attribute, 0))

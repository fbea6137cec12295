from __future__ import annotations

import copy
import json
import os
from typing import Any
from unittest.mock import MagicMock

# Set before any minibus module reads its configuration
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("TABLE_NAME", "minibus-test")
os.environ.setdefault("SIGNING_SECRET", "test-secret")
os.environ.setdefault("NOTIFICATION_SERVICE_URL", "https://notify.example.com")
os.environ.setdefault("POWERTOOLS_TRACE_DISABLED", "1")
os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "minibus-booking")

import pytest  # noqa: E402
from boto3.dynamodb.types import TypeDeserializer  # noqa: E402
from botocore.exceptions import ClientError  # noqa: E402

from minibus import config, notifier, store, tokens, users  # noqa: E402
from minibus.models import User, UserCreate  # noqa: E402

SECRET = "test-secret"

_deserializer = TypeDeserializer()


class FakeTable:
    """In-memory stand-in for the DynamoDB table, conditional writes and transactions included.

    Also stands in for the resource (``batch_get_item``) and the low-level
    client (``transact_write_items``).
    """

    def __init__(self) -> None:
        self.items: dict[str, dict[str, Any]] = {}
        self.put_calls = 0
        self.transactions = 0

    def get_item(self, Key, ConsistentRead=False):  # noqa NOSONAR
        item = self.items.get(Key["pk"])
        return {"Item": copy.deepcopy(item)} if item else {}

    def put_item(self, Item, **kwargs):  # noqa NOSONAR
        self.put_calls += 1
        self._check_condition(Item["pk"], kwargs)
        self.items[Item["pk"]] = copy.deepcopy(Item)
        return {}

    def delete_item(self, Key, **kwargs):  # noqa NOSONAR
        if kwargs.get("ConditionExpression") == "attribute_exists(pk)" and Key["pk"] not in self.items:
            raise _conditional_check_failed("DeleteItem")
        self.items.pop(Key["pk"], None)
        return {}

    def update_item(self, **kwargs):
        # Only the counter increment used for PIN attempts and id sequences
        key = kwargs["Key"]["pk"]
        names = kwargs["ExpressionAttributeNames"]
        values = kwargs["ExpressionAttributeValues"]
        item = self.items.setdefault(key, {"pk": key})
        attr = names["#a"]
        item[attr] = item.get(attr, 0) + values[":one"]
        if "#ttl" in names:
            item.setdefault(names["#ttl"], values[":ttl"])
        return {"Attributes": {attr: item[attr]}}

    def batch_get_item(self, RequestItems):  # noqa NOSONAR
        responses = {}
        for table_name, request in RequestItems.items():
            assert len(request["Keys"]) <= 100
            responses[table_name] = [
                copy.deepcopy(self.items[k["pk"]]) for k in request["Keys"] if k["pk"] in self.items
            ]
        return {"Responses": responses, "UnprocessedKeys": {}}

    def transact_write_items(self, TransactItems):  # noqa NOSONAR
        self.transactions += 1
        puts = []
        for action in TransactItems:
            put = action["Put"]
            item = {k: _deserializer.deserialize(v) for k, v in put["Item"].items()}
            condition = {
                "ConditionExpression": put.get("ConditionExpression"),
                "ExpressionAttributeValues": {
                    k: _deserializer.deserialize(v) for k, v in put.get("ExpressionAttributeValues", {}).items()
                },
            }
            puts.append((item, condition))

        reasons = []
        for item, condition in puts:
            try:
                self._check_condition(item["pk"], condition)
                reasons.append({"Code": "None"})
            except ClientError:
                reasons.append({"Code": "ConditionalCheckFailed"})
        if any(r["Code"] != "None" for r in reasons):
            raise ClientError(
                {
                    "Error": {"Code": "TransactionCanceledException", "Message": "Transaction cancelled"},
                    "CancellationReasons": reasons,
                },
                "TransactWriteItems",
            )
        for item, _ in puts:
            self.items[item["pk"]] = item
        return {}

    def _check_condition(self, key: str, kwargs: dict[str, Any]) -> None:
        condition = kwargs.get("ConditionExpression")
        if condition is None:
            return
        current = self.items.get(key)
        if condition == "attribute_not_exists(pk)":
            ok = current is None
        else:
            expected = kwargs["ExpressionAttributeValues"][":expected"]
            ok = current is not None and current.get("version") == expected
        if not ok:
            raise _conditional_check_failed("PutItem")


def _conditional_check_failed(operation: str) -> ClientError:
    return ClientError(
        {"Error": {"Code": "ConditionalCheckFailedException", "Message": "The conditional request failed"}},
        operation,
    )


@pytest.fixture(autouse=True)
def table(monkeypatch: pytest.MonkeyPatch) -> FakeTable:
    fake = FakeTable()
    monkeypatch.setattr(store, "_table", fake)
    monkeypatch.setattr(store, "_dynamodb", fake)
    monkeypatch.setattr(store, "_client", fake)
    return fake


@pytest.fixture(autouse=True)
def events(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    fake = MagicMock()
    fake.put_events.return_value = {"FailedEntryCount": 0, "Entries": [{"EventId": "e-1"}]}
    monkeypatch.setattr(notifier, "_events", fake)
    return fake


@pytest.fixture(autouse=True)
def reset_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "_signing_secret", None)


@pytest.fixture()
def published(events: MagicMock):
    """(detail type, detail) for every event handed to EventBridge so far."""

    def _published() -> list[tuple[str, dict[str, Any]]]:
        out = []
        for call in events.put_events.call_args_list:
            entry = call.kwargs["Entries"][0]
            out.append((entry["DetailType"], json.loads(entry["Detail"])))
        return out

    return _published


@pytest.fixture()
def make_user():
    def _make(name: str, phone: str, role: str = "user", email: str | None = None) -> User:
        return users.create_user(UserCreate(name=name, phone=phone, role=role, email=email))  # type: ignore[arg-type]

    return _make


@pytest.fixture()
def auth_header():
    def _header(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {tokens.issue_token(user, SECRET)}"}

    return _header

"""DynamoDB-backed tables."""

from __future__ import annotations

from typing import Any, Mapping

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import ConditionalWriteFailed, StoreUnavailable
from ..utils.logging_config import StructuredLogger
from .base import Item

logger = StructuredLogger(__name__)


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class DynamoTable:
    """``KeyValueTable`` over a boto3 ``Table`` resource.

    Native expiry requires TTL to be enabled on the ``ttl`` attribute of
    the table; reads never filter expired items themselves.
    """

    def __init__(self, table, key_fields: tuple[str, ...]):
        self._table = table
        self.key_fields = key_fields
        self.name = getattr(table, "name", "dynamodb")

    def _fail(self, op: str, exc: Exception) -> StoreUnavailable:
        code = _error_code(exc) if isinstance(exc, ClientError) else type(exc).__name__
        logger.error("DynamoDB call failed", table=self.name, op=op, error_code=code)
        return StoreUnavailable(details=f"{op} on {self.name} failed: {code}")

    def get(self, key: Mapping[str, Any]) -> Item | None:
        try:
            result = self._table.get_item(Key=dict(key), ConsistentRead=True)
        except (ClientError, BotoCoreError) as exc:
            raise self._fail("GetItem", exc) from exc
        return result.get("Item")

    @staticmethod
    def _equality_clauses(attrs: Mapping[str, Any], prefix: str, names: dict, values: dict) -> list[str]:
        clauses = []
        for i, (attr, value) in enumerate(sorted(attrs.items())):
            names[f"#{prefix}{i}"] = attr
            values[f":{prefix}{i}"] = value
            clauses.append(f"#{prefix}{i} = :{prefix}{i}")
        return clauses

    def _expected_condition(self, expected: Mapping[str, Any], names: dict, values: dict) -> str:
        names["#pk"] = self.key_fields[0]
        clauses = ["attribute_exists(#pk)"] + self._equality_clauses(expected, "e", names, values)
        return " AND ".join(clauses)

    def _conditional_call(self, op: str, call, **kwargs) -> None:
        try:
            call(**kwargs)
        except ClientError as exc:
            if _error_code(exc) == "ConditionalCheckFailedException":
                raise ConditionalWriteFailed(f"{self.name}: {op} condition not met") from exc
            raise self._fail(op, exc) from exc
        except BotoCoreError as exc:
            raise self._fail(op, exc) from exc

    def put_if_absent(self, item: Mapping[str, Any], *, replace_when: Mapping[str, Any] | None = None) -> None:
        names = {"#pk": self.key_fields[0]}
        values: dict[str, Any] = {}
        condition = "attribute_not_exists(#pk)"
        if replace_when:
            clauses = self._equality_clauses(replace_when, "c", names, values)
            condition = f"{condition} OR ({' AND '.join(clauses)})"

        kwargs: dict[str, Any] = {
            "Item": dict(item),
            "ConditionExpression": condition,
            "ExpressionAttributeNames": names,
        }
        if values:
            kwargs["ExpressionAttributeValues"] = values
        self._conditional_call("PutItem", self._table.put_item, **kwargs)

    def put(self, item: Mapping[str, Any]) -> None:
        try:
            self._table.put_item(Item=dict(item))
        except (ClientError, BotoCoreError) as exc:
            raise self._fail("PutItem", exc) from exc

    def update(
        self,
        key: Mapping[str, Any],
        changes: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> None:
        if not changes:
            return
        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        assignments = self._equality_clauses(changes, "a", names, values)
        kwargs: dict[str, Any] = {
            "Key": dict(key),
            "UpdateExpression": "SET " + ", ".join(assignments),
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
        }
        if expected is not None:
            kwargs["ConditionExpression"] = self._expected_condition(expected, names, values)
        self._conditional_call("UpdateItem", self._table.update_item, **kwargs)

    def delete(self, key: Mapping[str, Any], *, expected: Mapping[str, Any] | None = None) -> None:
        kwargs: dict[str, Any] = {"Key": dict(key)}
        if expected is not None:
            names: dict[str, str] = {}
            values: dict[str, Any] = {}
            kwargs["ConditionExpression"] = self._expected_condition(expected, names, values)
            kwargs["ExpressionAttributeNames"] = names
            if values:
                kwargs["ExpressionAttributeValues"] = values
        self._conditional_call("DeleteItem", self._table.delete_item, **kwargs)


def dynamodb_resource(region_name: str | None = None, endpoint_url: str | None = None):
    return boto3.resource("dynamodb", region_name=region_name, endpoint_url=endpoint_url)

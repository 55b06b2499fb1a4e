"""Key-value table contract shared by the idempotency and spend stores."""

from __future__ import annotations

from typing import Any, Mapping, Protocol

Item = dict[str, Any]

TTL_ATTRIBUTE = "ttl"


class KeyValueTable(Protocol):
    """Durable table with a conditional write and native TTL expiry.

    ``key`` arguments are mappings of the table's key attributes, e.g.
    ``{"key": "..."}`` for idempotency records or
    ``{"user_id": "...", "date": "YYYY-MM-DD"}`` for spend records.
    Items carry a ``ttl`` attribute (epoch seconds) that the backing
    store uses for native expiry.
    """

    key_fields: tuple[str, ...]

    def get(self, key: Mapping[str, Any]) -> Item | None:
        ...

    def put_if_absent(self, item: Mapping[str, Any], *, replace_when: Mapping[str, Any] | None = None) -> None:
        """Insert ``item`` unless an item with the same key exists.

        When ``replace_when`` is given, an existing item whose attributes
        equal every value in it is overwritten instead. Raises
        ``ConditionalWriteFailed`` when the condition does not hold.
        """
        ...

    def put(self, item: Mapping[str, Any]) -> None:
        ...

    def update(
        self,
        key: Mapping[str, Any],
        changes: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> None:
        """Set attributes on an item.

        Without ``expected`` this upserts. With it, the item must exist and
        match every value in ``expected``, or ``ConditionalWriteFailed`` is
        raised and nothing is written.
        """
        ...

    def delete(self, key: Mapping[str, Any], *, expected: Mapping[str, Any] | None = None) -> None:
        """Remove an item; ``expected`` works as in ``update``."""
        ...


def key_of(item: Mapping[str, Any], key_fields: tuple[str, ...]) -> dict[str, Any]:
    missing = [f for f in key_fields if f not in item]
    if missing:
        raise KeyError(f"Item is missing key attributes: {missing}")
    return {f: item[f] for f in key_fields}

"""In-process table used for local runs and tests."""

from __future__ import annotations

import copy
import threading
import time
from typing import Any, Mapping

from ..errors import ConditionalWriteFailed
from .base import TTL_ATTRIBUTE, Item, key_of


class MemoryTable:
    """Dict-backed ``KeyValueTable``.

    The lock only emulates the atomicity DynamoDB gives a single
    conditional write. Expired items are not hidden on read, mirroring
    DynamoDB TTL which deletes lazily; call ``purge_expired`` to run the
    sweeper.
    """

    def __init__(self, name: str, key_fields: tuple[str, ...]):
        self.name = name
        self.key_fields = key_fields
        self._items: dict[tuple, Item] = {}
        self._lock = threading.Lock()

    def _pk(self, key: Mapping[str, Any]) -> tuple:
        return tuple(key_of(key, self.key_fields).values())

    def get(self, key: Mapping[str, Any]) -> Item | None:
        with self._lock:
            item = self._items.get(self._pk(key))
            return copy.deepcopy(item) if item is not None else None

    def put_if_absent(self, item: Mapping[str, Any], *, replace_when: Mapping[str, Any] | None = None) -> None:
        pk = self._pk(item)
        with self._lock:
            existing = self._items.get(pk)
            if existing is not None:
                if not replace_when or any(existing.get(k) != v for k, v in replace_when.items()):
                    raise ConditionalWriteFailed(f"{self.name}: item already exists")
            self._items[pk] = copy.deepcopy(dict(item))

    def put(self, item: Mapping[str, Any]) -> None:
        with self._lock:
            self._items[self._pk(item)] = copy.deepcopy(dict(item))

    def _check_expected(self, existing: Item | None, expected: Mapping[str, Any] | None) -> None:
        if expected is None:
            return
        if existing is None or any(existing.get(k) != v for k, v in expected.items()):
            raise ConditionalWriteFailed(f"{self.name}: item does not match expected attributes")

    def update(
        self,
        key: Mapping[str, Any],
        changes: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> None:
        pk = self._pk(key)
        with self._lock:
            existing = self._items.get(pk)
            self._check_expected(existing, expected)
            current = existing or dict(key_of(key, self.key_fields))
            current.update(copy.deepcopy(dict(changes)))
            self._items[pk] = current

    def delete(self, key: Mapping[str, Any], *, expected: Mapping[str, Any] | None = None) -> None:
        pk = self._pk(key)
        with self._lock:
            self._check_expected(self._items.get(pk), expected)
            self._items.pop(pk, None)

    def purge_expired(self, now_epoch: int | None = None) -> int:
        now_epoch = int(time.time()) if now_epoch is None else now_epoch
        with self._lock:
            expired = [
                pk for pk, item in self._items.items()
                if item.get(TTL_ATTRIBUTE) is not None and int(item[TTL_ATTRIBUTE]) <= now_epoch
            ]
            for pk in expired:
                del self._items[pk]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

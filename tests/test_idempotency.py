import json
import threading
import time
import unittest
from datetime import datetime, timedelta, UTC

import pytest

from therma.daemon.control import (
    IdempotencyCoordinator,
    IdempotencyStatus,
    idempotency_key_for,
    request_hash_for,
)
from therma.daemon.errors import (
    ConcurrentDuplicate,
    EncryptionFailed,
    KeyConflict,
    StoreUnavailable,
)
from therma.daemon.store import IDEMPOTENCY_KEY_FIELDS, MemoryTable
from therma.daemon.utils.deterministic import fingerprint

from conftest import MutableClock

OP = "POST /journal-entries"
BODY = '{"content":"hello"}'


def _table():
    return MemoryTable("therma-idempotency", IDEMPOTENCY_KEY_FIELDS)


class TestKeyDerivation:
    def test_key_is_hash_of_user_operation_body(self):
        assert idempotency_key_for("u1", OP, BODY) == fingerprint("u1", OP, BODY)

    def test_request_hash_is_hash_of_body_only(self):
        assert request_hash_for(BODY) == fingerprint(BODY)

    def test_different_users_get_different_keys(self):
        assert idempotency_key_for("u1", OP, BODY) != idempotency_key_for("u2", OP, BODY)

    def test_client_key_replaces_body_in_key(self):
        a = idempotency_key_for("u1", OP, BODY, "k-1")
        b = idempotency_key_for("u1", OP, '{"content":"other"}', "k-1")
        assert a == b == fingerprint("u1", OP, "k-1")

    def test_blank_client_key_is_ignored(self):
        assert idempotency_key_for("u1", OP, BODY, "  ") == idempotency_key_for("u1", OP, BODY)

    def test_user_id_cannot_absorb_operation_and_body(self):
        shifted_user = f"x:{OP}:Y"
        assert idempotency_key_for("x", OP, f"Y:{OP}:Z") != idempotency_key_for(shifted_user, OP, "Z")


class TestCoordinator:
    def test_first_request_runs_work_and_completes(self, clock):
        table = _table()
        coordinator = IdempotencyCoordinator(table, clock=clock)

        outcome = coordinator.process("u1", OP, BODY, lambda: {"id": "e1"})

        assert outcome.value == {"id": "e1"}
        assert outcome.replayed is False
        record = coordinator.lookup(outcome.key)
        assert record.status == IdempotencyStatus.COMPLETED
        assert record.request_hash == request_hash_for(BODY)
        assert record.expires_at == clock.now + timedelta(hours=24)

    def test_record_carries_ttl_epoch(self, clock):
        table = _table()
        coordinator = IdempotencyCoordinator(table, clock=clock)
        outcome = coordinator.process("u1", OP, BODY, lambda: {"id": "e1"})

        item = table.get({"key": outcome.key})
        assert item["ttl"] == int((clock.now + timedelta(hours=24)).timestamp())

    def test_duplicate_replays_without_running_work(self, clock):
        coordinator = IdempotencyCoordinator(_table(), clock=clock)
        calls = []

        def work():
            calls.append(1)
            return {"id": "e1"}

        first = coordinator.process("u1", OP, BODY, work)
        second = coordinator.process("u1", OP, BODY, work)

        assert calls == [1]
        assert second.replayed is True
        assert second.value == first.value

    def test_pending_record_rejects_duplicate(self, clock):
        coordinator = IdempotencyCoordinator(_table(), clock=clock)

        def work():
            with pytest.raises(ConcurrentDuplicate):
                coordinator.process("u1", OP, BODY, lambda: {"id": "inner"})
            return {"id": "outer"}

        outcome = coordinator.process("u1", OP, BODY, work)
        assert outcome.value == {"id": "outer"}

    def test_same_key_different_body_conflicts(self, clock):
        coordinator = IdempotencyCoordinator(_table(), clock=clock)
        coordinator.process("u1", OP, BODY, lambda: {"id": "e1"}, idempotency_key="k-1")

        with pytest.raises(KeyConflict) as ctx:
            coordinator.process("u1", OP, '{"content":"other"}', lambda: {"id": "e2"}, idempotency_key="k-1")
        assert ctx.value.status_code == 409
        assert ctx.value.code == "IDEMPOTENCY_KEY_CONFLICT"

    def test_expired_record_is_treated_as_absent(self, clock):
        coordinator = IdempotencyCoordinator(_table(), ttl=timedelta(hours=24), clock=clock)
        coordinator.process("u1", OP, BODY, lambda: {"id": "e1"})

        clock.advance(hours=24)
        outcome = coordinator.process("u1", OP, BODY, lambda: {"id": "e2"})

        assert outcome.replayed is False
        assert outcome.value == {"id": "e2"}

    def test_lookup_deletes_expired_record(self, clock):
        table = _table()
        coordinator = IdempotencyCoordinator(table, clock=clock)
        outcome = coordinator.process("u1", OP, BODY, lambda: {"id": "e1"})

        clock.advance(hours=25)
        assert coordinator.lookup(outcome.key) is None
        assert len(table) == 0

    def test_failed_work_marks_record_and_propagates(self, clock):
        coordinator = IdempotencyCoordinator(_table(), clock=clock)

        def work():
            raise EncryptionFailed(details="kms down")

        with pytest.raises(EncryptionFailed):
            coordinator.process("u1", OP, BODY, work)

        record = coordinator.lookup(idempotency_key_for("u1", OP, BODY))
        assert record.status == IdempotencyStatus.FAILED
        assert record.response.startswith("error: EncryptionFailed")

    def test_failed_record_can_be_retried(self, clock):
        coordinator = IdempotencyCoordinator(_table(), clock=clock)

        def broken():
            raise EncryptionFailed()

        with pytest.raises(EncryptionFailed):
            coordinator.process("u1", OP, BODY, broken)

        outcome = coordinator.process("u1", OP, BODY, lambda: {"id": "e1"})
        assert outcome.replayed is False
        assert coordinator.lookup(outcome.key).status == IdempotencyStatus.COMPLETED

    def test_store_outage_on_read_propagates(self, clock):
        class DownTable:
            key_fields = IDEMPOTENCY_KEY_FIELDS

            def get(self, key):
                raise StoreUnavailable(details="GetItem failed")

        coordinator = IdempotencyCoordinator(DownTable(), clock=clock)
        ran = []
        with pytest.raises(StoreUnavailable):
            coordinator.process("u1", OP, BODY, lambda: ran.append(1))
        assert ran == []


class CoordinatorRaceTests(unittest.TestCase):
    def test_lost_claim_race_reports_concurrent_duplicate(self):
        table = _table()
        coordinator = IdempotencyCoordinator(table)
        key = idempotency_key_for("u1", OP, BODY)
        original_get = table.get

        # Another request claims the key between our read and our insert.
        def racing_get(k):
            result = original_get(k)
            table.put({
                "key": key,
                "user_id": "u1",
                "request_hash": request_hash_for(BODY),
                "status": "pending",
                "created_at": datetime.now(UTC).isoformat(),
                "expires_at": (datetime.now(UTC) + timedelta(hours=1)).isoformat(),
            })
            return result

        table.get = racing_get
        ran = []
        with self.assertRaises(ConcurrentDuplicate):
            coordinator.process("u1", OP, BODY, lambda: ran.append(1))
        self.assertEqual(ran, [])

    def test_concurrent_identical_requests_run_work_once(self):
        coordinator = IdempotencyCoordinator(_table())
        calls = []
        outcomes = []
        duplicates = []
        start = threading.Barrier(8)

        def work():
            calls.append(1)
            time.sleep(0.05)
            return {"id": "e1"}

        def submit():
            start.wait()
            try:
                outcomes.append(coordinator.process("u1", OP, BODY, work))
            except ConcurrentDuplicate:
                duplicates.append(1)

        threads = [threading.Thread(target=submit) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(calls), 1)
        self.assertEqual(len(outcomes) + len(duplicates), 8)
        fresh = [o for o in outcomes if not o.replayed]
        self.assertEqual(len(fresh), 1)

    def test_completion_update_failure_still_returns_result(self):
        table = _table()
        coordinator = IdempotencyCoordinator(table)

        def failing_update(key, changes, **kwargs):
            raise StoreUnavailable(details="UpdateItem failed")

        table.update = failing_update
        outcome = coordinator.process("u1", OP, BODY, lambda: {"id": "e1"})

        self.assertEqual(outcome.value, {"id": "e1"})
        self.assertEqual(coordinator.lookup(outcome.key).status, IdempotencyStatus.PENDING)

    def test_stale_expired_read_cannot_remove_newer_claim(self):
        table = _table()
        clock = MutableClock(datetime(2024, 3, 14, 12, 0, tzinfo=UTC))
        coordinator = IdempotencyCoordinator(table, ttl=timedelta(hours=1), clock=clock)
        key = coordinator.process("u1", OP, BODY, lambda: {"id": "first"}).key

        clock.advance(hours=2)
        stale = table.get({"key": key})
        calls = []

        def second_work():
            calls.append("B")
            return {"id": "B"}

        def first_work():
            calls.append("A")
            real_get = table.get

            # B read the expired record before A replaced it.
            def stale_get(k):
                table.get = real_get
                return dict(stale)

            table.get = stale_get
            with self.assertRaises(ConcurrentDuplicate):
                coordinator.process("u1", OP, BODY, second_work)
            return {"id": "A"}

        outcome = coordinator.process("u1", OP, BODY, first_work)

        self.assertEqual(calls, ["A"])
        self.assertEqual(outcome.value, {"id": "A"})
        record = coordinator.lookup(key)
        self.assertEqual(record.status, IdempotencyStatus.COMPLETED)
        self.assertEqual(json.loads(record.response), {"id": "A"})

    def test_claim_removed_during_work_is_not_recreated(self):
        table = _table()
        clock = MutableClock(datetime(2024, 3, 14, 12, 0, tzinfo=UTC))
        coordinator = IdempotencyCoordinator(table, ttl=timedelta(hours=1), clock=clock)
        key = idempotency_key_for("u1", OP, BODY)

        def slow_work():
            clock.advance(hours=2)
            self.assertIsNone(coordinator.lookup(key))
            return {"id": "e1"}

        outcome = coordinator.process("u1", OP, BODY, slow_work)

        self.assertEqual(outcome.value, {"id": "e1"})
        self.assertIsNone(table.get({"key": key}))

        again = coordinator.process("u1", OP, BODY, lambda: {"id": "e2"})
        self.assertFalse(again.replayed)
        self.assertEqual(again.value, {"id": "e2"})

    def test_malformed_record_is_treated_as_absent(self):
        table = _table()
        coordinator = IdempotencyCoordinator(table)
        key = idempotency_key_for("u1", OP, BODY)
        table.put({"key": key, "status": "completed", "response": "{}"})

        outcome = coordinator.process("u1", OP, BODY, lambda: {"id": "e1"})

        self.assertFalse(outcome.replayed)
        self.assertEqual(outcome.value, {"id": "e1"})
        self.assertEqual(coordinator.lookup(key).status, IdempotencyStatus.COMPLETED)

    def test_records_carry_attempt_id(self):
        table = _table()
        coordinator = IdempotencyCoordinator(table, attempt_ids=lambda: "attempt-1")
        outcome = coordinator.process("u1", OP, BODY, lambda: {"id": "e1"})

        self.assertEqual(table.get({"key": outcome.key})["attempt_id"], "attempt-1")


if __name__ == "__main__":
    unittest.main()

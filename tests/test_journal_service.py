import json
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from therma.daemon.control import IdempotencyCoordinator
from therma.daemon.encryption import PHICipher
from therma.daemon.errors import (
    EncryptionFailed,
    EntryNotFound,
    InvalidRequest,
    KeyConflict,
    StoreUnavailable,
    ValidationFailed,
)
from therma.daemon.journal import JournalEntryService, MemoryEntryRepository, parse_entry_request
from therma.daemon.ledger import SpendLedger
from therma.daemon.store import IDEMPOTENCY_KEY_FIELDS, SPEND_KEY_FIELDS, MemoryTable
from therma.daemon.utils.config_loader import LLMConfig

from conftest import FakeEncryptionService

BODY = json.dumps({"content": "Slept five hours", "mood": "tired", "tags": ["sleep", "work"]})


class Pipeline:
    def __init__(self, clock, encryption=None, limit=Decimal("5.00"), notifier=None):
        self.encryption = encryption or FakeEncryptionService()
        self.repository = MemoryEntryRepository()
        self.spend_table = MemoryTable("therma-user-spend", SPEND_KEY_FIELDS)
        self.ledger = SpendLedger(self.spend_table, limit_resolver=lambda user: limit, clock=clock)
        self.ids = iter(f"entry_{i}" for i in range(100))
        self.service = JournalEntryService(
            coordinator=IdempotencyCoordinator(MemoryTable("therma-idempotency", IDEMPOTENCY_KEY_FIELDS), clock=clock),
            ledger=self.ledger,
            cipher=PHICipher(self.encryption),
            repository=self.repository,
            llm=LLMConfig(),
            notifier=notifier,
            clock=clock,
            id_factory=lambda: next(self.ids),
        )


class TestParseRequest:
    def test_valid_body(self):
        request = parse_entry_request(BODY)
        assert request.content == "Slept five hours"
        assert request.tags == ["sleep", "work"]

    def test_defaults(self):
        request = parse_entry_request('{"content": "x"}')
        assert request.mood == ""
        assert request.tags == []
        assert request.idempotency_key is None

    def test_invalid_json(self):
        with pytest.raises(InvalidRequest) as ctx:
            parse_entry_request("{not json")
        assert ctx.value.code == "INVALID_REQUEST"

    def test_non_object_json(self):
        with pytest.raises(InvalidRequest):
            parse_entry_request("[1, 2]")

    def test_empty_content(self):
        with pytest.raises(ValidationFailed) as ctx:
            parse_entry_request('{"content": ""}')
        assert ctx.value.message == "content: Content is required"

    def test_whitespace_content_is_accepted(self):
        assert parse_entry_request('{"content": "   "}').content == "   "

    def test_missing_content(self):
        with pytest.raises(ValidationFailed) as ctx:
            parse_entry_request('{"mood": "ok"}')
        assert ctx.value.message.startswith("content:")

    def test_wrong_tag_type(self):
        with pytest.raises(ValidationFailed):
            parse_entry_request('{"content": "x", "tags": "sleep"}')


class TestCreateEntry:
    def test_happy_path_encrypts_persists_and_records(self, clock):
        p = Pipeline(clock)
        outcome = p.service.create_entry("u1", BODY)

        entry = outcome.value
        assert outcome.replayed is False
        assert entry.id == "entry_0"
        assert entry.encrypted is True
        assert entry.content != "Slept five hours"
        assert len(entry.tags) == 2
        assert p.repository.get("entry_0") == entry

        summary = p.ledger.get_summary("u1")
        assert summary.request_count == 1
        assert summary.accumulated_cost == p.service.estimate_cost(parse_entry_request(BODY))

    def test_estimate_counts_content_bytes_as_input_tokens(self, clock):
        p = Pipeline(clock)
        request = parse_entry_request(json.dumps({"content": "a" * 1000}))
        # 1000 input tokens and 100 output tokens at Sonnet prices
        assert p.service.estimate_cost(request) == Decimal("0.0045")

    def test_duplicate_submission_is_replayed_without_side_effects(self, clock):
        p = Pipeline(clock)
        first = p.service.create_entry("u1", BODY)
        calls_after_first = p.encryption.encrypt_calls

        second = p.service.create_entry("u1", BODY)

        assert second.replayed is True
        assert second.value == first.value
        assert p.encryption.encrypt_calls == calls_after_first
        assert len(p.repository.all()) == 1
        assert p.ledger.get_summary("u1").request_count == 1

    def test_over_budget_degrades_to_plaintext(self, clock):
        """$4.99 spent against $5.00: the entry comes back unencrypted and unsaved."""
        p = Pipeline(clock)
        p.ledger.record("u1", Decimal("4.99"))
        big = json.dumps({"content": "x" * 200_000, "mood": "tired"})

        entry = p.service.create_entry("u1", big).value

        assert entry.encrypted is False
        assert entry.content == "x" * 200_000
        assert entry.mood == "tired"
        assert entry.user_id == "u1"
        assert p.encryption.encrypt_calls == 0
        assert p.repository.all() == []
        summary = p.ledger.get_summary("u1")
        assert summary.request_count == 1
        assert summary.accumulated_cost == Decimal("4.99")

    def test_degraded_result_is_replayed(self, clock):
        p = Pipeline(clock, limit=Decimal("0.0001"))
        first = p.service.create_entry("u1", BODY)
        second = p.service.create_entry("u1", BODY)
        assert first.value.encrypted is False
        assert second.replayed is True
        assert second.value == first.value

    def test_encryption_failure_persists_nothing(self, clock):
        p = Pipeline(clock, encryption=FakeEncryptionService(fail_on=b"work"))

        with pytest.raises(EncryptionFailed):
            p.service.create_entry("u1", BODY)

        assert p.repository.all() == []
        assert p.ledger.get_summary("u1") is None

    def test_retry_after_encryption_failure(self, clock):
        encryption = FakeEncryptionService(fail_on=b"work")
        p = Pipeline(clock, encryption=encryption)
        with pytest.raises(EncryptionFailed):
            p.service.create_entry("u1", BODY)

        encryption.fail_on = None
        outcome = p.service.create_entry("u1", BODY)
        assert outcome.replayed is False
        assert outcome.value.encrypted is True

    def test_cost_record_failure_does_not_fail_request(self, clock):
        p = Pipeline(clock)

        def broken_put(item):
            raise StoreUnavailable(details="PutItem failed")

        p.spend_table.put = broken_put
        outcome = p.service.create_entry("u1", BODY)
        assert outcome.value.encrypted is True
        assert len(p.repository.all()) == 1

    def test_header_key_reused_with_other_body_conflicts(self, clock):
        p = Pipeline(clock)
        p.service.create_entry("u1", BODY, idempotency_key="abc")
        with pytest.raises(KeyConflict):
            p.service.create_entry("u1", '{"content": "different"}', idempotency_key="abc")

    def test_body_idempotency_key_is_used(self, clock):
        p = Pipeline(clock)
        p.service.create_entry("u1", '{"content": "a", "idempotency_key": "k"}')
        with pytest.raises(KeyConflict):
            p.service.create_entry("u1", '{"content": "b", "idempotency_key": "k"}')

    def test_invalid_body_never_claims_a_key(self, clock):
        p = Pipeline(clock)
        with pytest.raises(ValidationFailed):
            p.service.create_entry("u1", '{"content": ""}')
        assert p.encryption.encrypt_calls == 0

    def test_notifier_gets_ids_only(self, clock):
        notifier = MagicMock()
        p = Pipeline(clock, notifier=notifier)
        entry = p.service.create_entry("u1", BODY).value

        notifier.notify.assert_called_once_with(
            "journal_entry.created",
            {"entry_id": entry.id, "user_id": "u1", "encrypted": True},
        )

    def test_degraded_entry_does_not_notify(self, clock):
        notifier = MagicMock()
        p = Pipeline(clock, limit=Decimal("0.0001"), notifier=notifier)
        p.service.create_entry("u1", BODY)
        notifier.notify.assert_not_called()


class TestReadEntry:
    def test_read_decrypts(self, clock):
        p = Pipeline(clock)
        entry = p.service.create_entry("u1", BODY).value

        plain = p.service.read_entry("u1", entry.id)
        assert plain.content == "Slept five hours"
        assert plain.mood == "tired"
        assert plain.tags == ["sleep", "work"]
        assert plain.encrypted is False

    def test_other_users_entry_is_not_found(self, clock):
        p = Pipeline(clock)
        entry = p.service.create_entry("u1", BODY).value
        with pytest.raises(EntryNotFound):
            p.service.read_entry("u2", entry.id)

    def test_missing_entry(self, clock):
        with pytest.raises(EntryNotFound):
            Pipeline(clock).service.read_entry("u1", "entry_missing")

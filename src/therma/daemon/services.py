"""Construction of the collaborators behind one running daemon."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from .auth import TokenVerifier
from .control import IdempotencyCoordinator
from .encryption import EncryptionService, KmsEncryptionService, LocalEncryptionService, PHICipher
from .journal import EntryRepository, JournalEntryService, MemoryEntryRepository, PostgresEntryRepository
from .ledger import LimitResolver, SpendLedger, fixed_limit
from .observability import WorkflowNotifier
from .store import IDEMPOTENCY_KEY_FIELDS, SPEND_KEY_FIELDS, DynamoTable, KeyValueTable, MemoryTable, dynamodb_resource
from .utils.config_loader import EncryptionConfig, StoreConfig, ThermaConfig
from .utils.logging_config import StructuredLogger

logger = StructuredLogger(__name__)


@dataclass
class Services:
    config: ThermaConfig
    verifier: TokenVerifier
    idempotency_table: KeyValueTable
    spend_table: KeyValueTable
    coordinator: IdempotencyCoordinator
    ledger: SpendLedger
    encryption: EncryptionService
    cipher: PHICipher
    repository: EntryRepository
    journal: JournalEntryService
    notifier: WorkflowNotifier | None = None

    def close(self) -> None:
        if self.notifier is not None:
            self.notifier.close()


def build_tables(store: StoreConfig) -> tuple[KeyValueTable, KeyValueTable]:
    if store.backend == "memory":
        return (
            MemoryTable(store.idempotency_table, IDEMPOTENCY_KEY_FIELDS),
            MemoryTable(store.spend_table, SPEND_KEY_FIELDS),
        )
    resource = dynamodb_resource(store.region, store.endpoint_url)
    return (
        DynamoTable(resource.Table(store.idempotency_table), IDEMPOTENCY_KEY_FIELDS),
        DynamoTable(resource.Table(store.spend_table), SPEND_KEY_FIELDS),
    )


def build_encryption_service(encryption: EncryptionConfig, region: str | None = None) -> EncryptionService:
    if encryption.backend == "local":
        return LocalEncryptionService.from_env(encryption.local_key_env)
    return KmsEncryptionService(encryption.key_id or "", region_name=region)


def build_repository(config: ThermaConfig) -> EntryRepository:
    if config.database.backend == "memory":
        return MemoryEntryRepository()
    return PostgresEntryRepository()


def build_services(
    config: ThermaConfig,
    *,
    verifier: TokenVerifier | None = None,
    encryption: EncryptionService | None = None,
    repository: EntryRepository | None = None,
    limit_resolver: LimitResolver | None = None,
) -> Services:
    """Build every collaborator from config; any of them can be passed in."""
    idempotency_table, spend_table = build_tables(config.store)
    verifier = verifier or TokenVerifier.from_env(config.auth.secret_env)
    encryption = encryption or build_encryption_service(config.encryption, config.store.region)
    repository = repository or build_repository(config)

    coordinator = IdempotencyCoordinator(
        idempotency_table,
        ttl=timedelta(hours=config.idempotency.ttl_hours),
    )
    ledger = SpendLedger(
        spend_table,
        limit_resolver=limit_resolver or fixed_limit(config.spend.default_daily_limit),
        record_ttl=timedelta(days=config.spend.record_ttl_days),
    )
    cipher = PHICipher(encryption)

    notifier = None
    if config.workflow.url:
        notifier = WorkflowNotifier(
            config.workflow.url,
            secret=config.workflow.secret,
            timeout=config.workflow.timeout_seconds,
        )

    journal = JournalEntryService(
        coordinator=coordinator,
        ledger=ledger,
        cipher=cipher,
        repository=repository,
        llm=config.llm,
        notifier=notifier,
    )

    logger.info(
        "Services built",
        store=config.store.backend,
        encryption=config.encryption.backend,
        database=config.database.backend,
        workflow=bool(notifier),
    )
    return Services(
        config=config,
        verifier=verifier,
        idempotency_table=idempotency_table,
        spend_table=spend_table,
        coordinator=coordinator,
        ledger=ledger,
        encryption=encryption,
        cipher=cipher,
        repository=repository,
        journal=journal,
        notifier=notifier,
    )

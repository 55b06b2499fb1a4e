"""Operational commands: tokens, spend, idempotency records, KMS key."""

import typer
from rich.table import Table

from ..daemon.auth import TokenVerifier
from ..daemon.control import IdempotencyCoordinator
from ..daemon.encryption import KmsEncryptionService
from ..daemon.errors import EncryptionFailed, StoreUnavailable
from ..daemon.ledger import SpendLedger, fixed_limit
from ..daemon.services import build_tables
from ..daemon.utils.config_loader import config_loader
from . import console, idempotency_app, kms_app, spend_app, token_app


def _load_config():
    try:
        return config_loader.get()
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _warn_if_memory(config) -> None:
    if config.store.backend == "memory":
        console.print("[yellow]Store backend is 'memory'; this process sees an empty store.[/yellow]")


# ── Tokens ──────────────────────────────────────────────────────────────────

@token_app.command("issue")
def issue_token(
    user_id: str = typer.Argument(..., help="User id to embed in the token"),
    ttl_minutes: int = typer.Option(None, "--ttl", help="Lifetime in minutes"),
):
    """Issue a bearer token signed with THERMA_JWT_SECRET (development use)."""
    config = _load_config()
    try:
        verifier = TokenVerifier.from_env(config.auth.secret_env)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    minutes = ttl_minutes or config.auth.token_ttl_minutes
    console.print(verifier.issue(user_id, ttl_seconds=minutes * 60), soft_wrap=True)


# ── Spend ───────────────────────────────────────────────────────────────────

@spend_app.command("show")
def show_spend(user_id: str = typer.Argument(..., help="User id")):
    """Show today's spend for a user."""
    config = _load_config()
    _warn_if_memory(config)
    _, spend_table = build_tables(config.store)
    ledger = SpendLedger(spend_table, limit_resolver=fixed_limit(config.spend.default_daily_limit))

    try:
        check = ledger.check_limit(user_id, 0)
        record = ledger.get_summary(user_id)
    except StoreUnavailable as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Spend for {user_id} on {ledger.today()}")
    table.add_column("Requests", justify="right")
    table.add_column("Spent (USD)", justify="right")
    table.add_column("Limit (USD)", justify="right")
    table.add_column("Remaining (USD)", justify="right")
    table.add_row(
        str(record.request_count if record else 0),
        f"{check.current_cost:.4f}",
        f"{check.daily_limit:.2f}",
        f"{check.remaining:.4f}",
    )
    console.print(table)


# ── Idempotency ─────────────────────────────────────────────────────────────

@idempotency_app.command("show")
def show_idempotency_record(key: str = typer.Argument(..., help="Full idempotency key (hex)")):
    """Show a live idempotency record."""
    config = _load_config()
    _warn_if_memory(config)
    idempotency_table, _ = build_tables(config.store)
    coordinator = IdempotencyCoordinator(idempotency_table)

    try:
        record = coordinator.lookup(key)
    except StoreUnavailable as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if record is None:
        console.print("[yellow]No live record for that key.[/yellow]")
        raise typer.Exit(1)

    table = Table(title="Idempotency record")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("key", record.key)
    table.add_row("user_id", record.user_id)
    table.add_row("status", str(record.status))
    table.add_row("request_hash", record.request_hash)
    table.add_row("created_at", record.created_at.isoformat())
    table.add_row("expires_at", record.expires_at.isoformat())
    if record.status != "completed" and record.response:
        table.add_row("error", record.response)
    console.print(table)


# ── KMS ─────────────────────────────────────────────────────────────────────

@kms_app.command("check")
def check_kms(show_policy: bool = typer.Option(False, "--policy", help="Print the key policy")):
    """Validate that the configured KMS key exists and is enabled."""
    config = _load_config()
    if config.encryption.backend != "kms":
        console.print(f"[yellow]Encryption backend is '{config.encryption.backend}', nothing to check.[/yellow]")
        return
    try:
        service = KmsEncryptionService(config.encryption.key_id or "", region_name=config.store.region)
        metadata = service.validate_key()
        console.print(f"[green]Key {metadata.get('KeyId', service.key_id)} is {metadata.get('KeyState', 'Enabled')}.[/green]")
        if show_policy:
            console.print(service.get_key_policy())
    except (ValueError, EncryptionFailed) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

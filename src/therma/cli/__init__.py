"""Therma CLI: modular command package."""

import os
import subprocess
import sys
from pathlib import Path

import typer
from rich.console import Console

from .. import __version__
from ..daemon.db import init_db
from ..daemon.encryption import generate_data_key
from ..daemon.utils.config_loader import config_loader

# ── Shared state ────────────────────────────────────────────────────────────

app = typer.Typer(help="Therma - idempotent, encrypted journal entry service")
console = Console()

token_app = typer.Typer()
spend_app = typer.Typer()
idempotency_app = typer.Typer()
kms_app = typer.Typer()

app.add_typer(token_app, name="token", help="Issue development bearer tokens")
app.add_typer(spend_app, name="spend", help="Inspect per-user daily spend")
app.add_typer(idempotency_app, name="idempotency", help="Inspect idempotency records")
app.add_typer(kms_app, name="kms", help="Check the PHI encryption key")

# ── Path constants ──────────────────────────────────────────────────────────

THERMA_DIR = Path.home() / ".therma"
LOG_DIR = THERMA_DIR / "logs"

DEFAULT_CONFIG_YAML = """version: 1

store:
  backend: dynamodb
  idempotency_table: therma-idempotency
  spend_table: therma-user-spend

idempotency:
  ttl_hours: 24

spend:
  default_daily_limit: "5.00"
  record_ttl_days: 7

encryption:
  backend: kms          # or "local" with THERMA_LOCAL_DATA_KEY set
  # key_id comes from KMS_KEY_ID

llm:
  model: anthropic.claude-3-sonnet-20240229-v1:0
  output_tokens: 100

database:
  backend: postgres     # THERMA_PG_DSN

workflow:
  url: null
"""


# ── Top-level commands ──────────────────────────────────────────────────────

@app.command("init")
def init_therma(
    local_key: bool = typer.Option(False, "--local-key", help="Print a fresh THERMA_LOCAL_DATA_KEY"),
):
    """Write a default config file and initialize the entries table."""
    config_file = config_loader.config_file
    console.print(f"[bold]Initializing Therma in {config_file.parent}...[/bold]")

    config_file.parent.mkdir(parents=True, exist_ok=True)
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    if not config_file.exists():
        config_file.write_text(DEFAULT_CONFIG_YAML)
        console.print(f"Created {config_file}")

    try:
        config = config_loader.load_config()
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if config.database.backend == "postgres":
        try:
            init_db()
            console.print("[green]Database initialized.[/green]")
        except Exception as e:
            console.print(f"[red]Failed to initialize database: {e}[/red]")
            raise typer.Exit(1)

    if local_key:
        console.print(f"THERMA_LOCAL_DATA_KEY={generate_data_key()}")

    console.print("[green]Therma initialized.[/green]")


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address"),
    port: int = typer.Option(8080, help="Bind port"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Run the HTTP daemon in the foreground."""
    env = os.environ.copy()
    env.setdefault("THERMA_LOG_DIR", str(LOG_DIR))

    cmd = [
        sys.executable, "-m", "uvicorn",
        "therma.daemon.app:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        cmd.append("--reload")

    console.print(f"[green]Starting Therma {__version__} on {host}:{port}...[/green]")
    try:
        sys.exit(subprocess.call(cmd, env=env))
    except KeyboardInterrupt:
        sys.exit(130)


@app.command("version")
def version():
    """Print the installed version."""
    console.print(__version__)


# ── Register submodule commands (import triggers decorator registration) ────

from . import ops_cmds  # noqa: E402, F401


def main():
    app()

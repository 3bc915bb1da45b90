"""Wiring shared by CLI commands: store, controller and saved identities.

Each CLI invocation is a short-lived client: it resumes the identity
saved on this device, performs one action and exits.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Coroutine, Optional, TypeVar

import typer
from rich.console import Console

from team_order.catalog import CatalogError, StaticMenuCatalog
from team_order.session.controller import SessionController, SyncOutcome
from team_order.session.errors import NoActiveSessionError, SessionError
from team_order.session.models import ParticipantSession
from team_order.sync.config import SyncConfig
from team_order.sync.primitives import RetryPolicy, SyncClient, SyncFailure
from team_order.sync.queue import OfflineQueue
from team_order.sync.store import DocumentStore, StoreError

logger = logging.getLogger(__name__)

console = Console()

T = TypeVar("T")

CURRENT_SESSION_FILE = "current_session"


def identities_dir(config: SyncConfig) -> Path:
    return config.config_dir / "sessions"


def save_identity(config: SyncConfig, participant: ParticipantSession) -> Path:
    """Remember who this device is in ``participant.session_id``."""
    directory = identities_dir(config)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{participant.session_id}.json"
    path.write_text(json.dumps(participant.identity_dict(), indent=2), encoding="utf-8")
    (config.config_dir / CURRENT_SESSION_FILE).write_text(participant.session_id, encoding="utf-8")
    return path


def load_identity(config: SyncConfig, session_id: Optional[str] = None) -> ParticipantSession:
    if session_id is None:
        current = config.config_dir / CURRENT_SESSION_FILE
        if not current.exists():
            raise NoActiveSessionError("No current session; create or join one first")
        session_id = current.read_text(encoding="utf-8").strip()
    path = identities_dir(config) / f"{session_id}.json"
    try:
        return ParticipantSession.from_identity(json.loads(path.read_text(encoding="utf-8")))
    except FileNotFoundError:
        raise NoActiveSessionError(f"You have not joined session {session_id}") from None
    except (OSError, ValueError, KeyError) as exc:
        raise NoActiveSessionError(f"Saved identity for {session_id} is unreadable: {exc}") from exc


def forget_identity(config: SyncConfig, session_id: str) -> None:
    (identities_dir(config) / f"{session_id}.json").unlink(missing_ok=True)
    current = config.config_dir / CURRENT_SESSION_FILE
    if current.exists() and current.read_text(encoding="utf-8").strip() == session_id:
        current.unlink()


def build_store(config: SyncConfig) -> DocumentStore:
    from team_order.sync.http_store import HttpDocumentStore

    return HttpDocumentStore(
        config.get_server_url(),
        request_timeout=float(config.get("sync", "timeout_seconds")),
    )


def build_sync_client(config: SyncConfig, store: DocumentStore) -> SyncClient:
    return SyncClient(
        store,
        policy=RetryPolicy.from_config(config),
        queue=OfflineQueue(config.config_dir / "pending.db"),
    )


def load_catalog(config: SyncConfig) -> Optional[StaticMenuCatalog]:
    path = config.get("session", "catalog_path")
    if not path:
        return None
    try:
        return StaticMenuCatalog.from_file(Path(path).expanduser())
    except CatalogError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)


@asynccontextmanager
async def open_controller(config: SyncConfig) -> AsyncIterator[SessionController]:
    store = build_store(config)
    controller = SessionController(
        build_sync_client(config, store),
        catalog=load_catalog(config),
        deadline_poll_interval=float(config.get("session", "deadline_poll_seconds")),
    )
    try:
        yield controller
    finally:
        await controller.detach()
        aclose = getattr(store, "aclose", None)
        if aclose is not None:
            await aclose()


def run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a command coroutine, turning domain errors into a clean exit."""
    try:
        return asyncio.run(coro)
    except SessionError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)
    except SyncFailure as exc:
        console.print(f"[red]Sync failed:[/red] {exc}")
        raise typer.Exit(2)
    except StoreError as exc:
        console.print(f"[red]Store error:[/red] {exc}")
        raise typer.Exit(2)


def report_outcome(outcome: SyncOutcome, success: str) -> None:
    if outcome == SyncOutcome.SYNCED:
        console.print(f"[green]✓[/green] {success}")
    elif outcome == SyncOutcome.DEGRADED:
        console.print(f"[yellow]⚠[/yellow] {success} [dim](offline; queued for sync)[/dim]")
    else:
        console.print(f"[red]✗[/red] {success} locally, but the sync failed")
        console.print("[dim]Run the command again once the server is reachable.[/dim]")
        raise typer.Exit(2)


def describe(value: Any) -> str:
    return "[dim]-[/dim]" if value in (None, "") else str(value)

# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line interface for the relay worker.

Usage:
    relay-worker run
    relay-worker init-db
    relay-worker enqueue <message-id>
    relay-worker show <message-id> [--json]
    relay-worker pending
    relay-worker encrypt-credentials credentials.json

Every command reads its settings through :func:`relay_worker.config.load_settings`
(``--config`` overrides ``WORKER_CONFIG``).

Example:
    $ CREDENTIAL_ENCRYPTION_KEY=... relay-worker encrypt-credentials aws.json
    $ relay-worker enqueue 7f0c3a4e-...
    $ relay-worker show 7f0c3a4e-...
"""

from __future__ import annotations

import asyncio
import json
import os
import signal
import sys
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from .api import create_app, serve_ops
from .config import WorkerSettings, load_settings
from .crypto import CryptoError, encrypt_record, load_key
from .errors import WorkerStartupError
from .logger import configure_logging, get_logger
from .queue import StreamQueue
from .result import Err, Ok
from .store import open_store
from .worker import MessageWorker, build_worker

console = Console()
err_console = Console(stderr=True)
logger = get_logger("relay_worker.cli")


def run_async(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    console.print_json(json.dumps(data, indent=2, default=str))


def _queue_for(settings: WorkerSettings) -> StreamQueue:
    return StreamQueue.from_url(
        settings.queue.redis_url,
        stream=settings.queue.stream,
        group=settings.queue.consumer_group,
        consumer=settings.queue.consumer_name,
    )


@click.group()
@click.version_option(package_name="relay-worker")
@click.option("--config", "config_path", default=None, help="INI file (default: $WORKER_CONFIG or config.ini).")
@click.pass_context
def main(ctx: click.Context, config_path: str | None) -> None:
    """Relay worker - deliver queued notifications through SES and SNS."""
    environ = dict(os.environ)
    if config_path:
        environ["WORKER_CONFIG"] = config_path
    ctx.obj = load_settings(environ)


# ============================================================================
# Worker
# ============================================================================


async def _run_until_stopped(worker: MessageWorker, stop: asyncio.Event) -> None:
    try:
        await worker.run(stop)
    finally:
        stop.set()


async def run_worker(settings: WorkerSettings, worker: MessageWorker | None = None) -> int:
    """Start the worker and block until SIGTERM/SIGINT; returns the exit status."""
    if worker is None:
        try:
            worker = build_worker(settings)
        except CryptoError as exc:
            logger.critical("Invalid credential encryption key: %s", exc)
            return 1

    try:
        await worker.startup()
    except WorkerStartupError as exc:
        logger.critical("Worker startup failed: %s", exc)
        try:
            await worker.queue.close()
        except Exception as close_exc:
            logger.error("Error closing Redis connection: %s", close_exc)
        return 1

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_stop(signame: str) -> None:
        if not stop.is_set():
            logger.info("Received %s, shutting down gracefully", signame)
            stop.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, request_stop, sig.name)

    tasks = [_run_until_stopped(worker, stop)]
    if settings.server.port:
        app = create_app(worker, api_token=settings.server.api_token)
        tasks.append(serve_ops(app, settings.server.host, settings.server.port, stop))
    try:
        await asyncio.gather(*tasks)
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
    return 0


@main.command("run")
@click.pass_obj
def run_command(settings: WorkerSettings) -> None:
    """Consume the message stream until SIGTERM or SIGINT."""
    configure_logging(settings.log_level)
    sys.exit(run_async(run_worker(settings)))


# ============================================================================
# Store
# ============================================================================


@main.command("init-db")
@click.pass_obj
def init_db(settings: WorkerSettings) -> None:
    """Create the message tables if they do not exist."""

    async def _init() -> None:
        async with open_store(settings.db_url):
            pass

    run_async(_init())
    print_success(f"Database ready at {settings.db_url}")


@main.command("show")
@click.argument("message_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def show_message(settings: WorkerSettings, message_id: str, as_json: bool) -> None:
    """Show a message status and its event trail."""

    async def _load() -> tuple[dict[str, Any] | None, list[dict[str, Any]]]:
        async with open_store(settings.db_url) as store:
            return await store.get_message(message_id), await store.list_events(message_id)

    message, events = run_async(_load())
    if message is None:
        print_error(f"Message '{message_id}' not found")
        sys.exit(1)

    if as_json:
        print_json({"message": message, "events": events})
        return

    console.print(f"[bold]Message:[/bold] {message['id']}")
    console.print(f"  Channel:   {message['channel']} ({message['provider_type']})")
    console.print(f"  Recipient: {message.get('recipient') or '-'}")
    console.print(f"  Status:    [cyan]{message['status']}[/cyan]")
    if message.get("status_reason"):
        console.print(f"  Reason:    {message['status_reason']}")

    table = Table(title="Events")
    table.add_column("ID", justify="right")
    table.add_column("Status", style="cyan")
    table.add_column("Created")
    table.add_column("Details")
    for event in events:
        details = event.get("details")
        table.add_row(
            str(event["id"]),
            event["status"],
            event["created_at"],
            json.dumps(details, default=str) if details else "-",
        )
    console.print(table)


# ============================================================================
# Queue
# ============================================================================


@main.command("enqueue")
@click.argument("message_id")
@click.pass_obj
def enqueue(settings: WorkerSettings, message_id: str) -> None:
    """Push a message id onto the stream (replay or manual enqueue)."""

    async def _enqueue():
        queue = _queue_for(settings)
        try:
            return await queue.enqueue(message_id)
        finally:
            await queue.close()

    match run_async(_enqueue()):
        case Ok(entry_id):
            print_success(f"Message '{message_id}' queued as entry {entry_id}")
        case Err(error):
            print_error(f"Could not enqueue message: {error}")
            sys.exit(1)


@main.command("pending")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def pending(settings: WorkerSettings, as_json: bool) -> None:
    """Show the pending-entries summary of the consumer group."""

    async def _summary() -> dict[str, Any]:
        queue = _queue_for(settings)
        try:
            return await queue.pending_summary()
        finally:
            await queue.close()

    try:
        summary = run_async(_summary())
    except Exception as exc:
        print_error(f"Could not read pending entries: {exc}")
        sys.exit(1)

    if as_json:
        print_json(summary)
        return

    console.print(
        f"[bold]{settings.queue.stream}[/bold] / {settings.queue.consumer_group}: "
        f"{summary['pending']} pending"
    )
    if summary["pending"]:
        console.print(f"  Range: {summary['min']} .. {summary['max']}")
    table = Table(title="Consumers")
    table.add_column("Consumer", style="cyan")
    table.add_column("Pending", justify="right")
    for consumer in summary["consumers"]:
        table.add_row(consumer["name"], str(consumer["pending"]))
    console.print(table)


# ============================================================================
# Credentials
# ============================================================================


@main.command("encrypt-credentials")
@click.argument("source", type=click.File("r"))
@click.pass_obj
def encrypt_credentials(settings: WorkerSettings, source) -> None:
    """Encrypt a credential JSON document with CREDENTIAL_ENCRYPTION_KEY.

    String values are encrypted except those under "unencrypted".
    Use "-" to read from stdin.
    """
    try:
        document = json.load(source)
    except json.JSONDecodeError as exc:
        print_error(f"Invalid JSON: {exc}")
        sys.exit(1)
    if not isinstance(document, dict):
        print_error("Credentials must be a JSON object")
        sys.exit(1)
    try:
        key = load_key(settings.encryption_key)
    except CryptoError as exc:
        print_error(str(exc))
        sys.exit(1)
    match encrypt_record(document, key):
        case Ok(encrypted):
            print_json(encrypted)
        case Err(error):
            print_error(f"Encryption failed: {error}")
            sys.exit(1)


if __name__ == "__main__":
    main()

"""CLI entry point for bouncer.

Commands:
    bouncer run               - triage one batch of unseen mail
    bouncer announce          - announce pending denylist entries
    bouncer audit             - show recent triage decisions
    bouncer denylist list     - show the denylist
    bouncer denylist add      - add a sender by hand
    bouncer denylist remove   - remove a sender
"""

import asyncio
import logging
import sys
from contextlib import AsyncExitStack

import click

from bouncer.config import (
    API_RETRY_DELAY_SECONDS,
    API_RETRY_MAX,
    API_RETRYABLE_STATUSES,
    AUDIT_LOG_PATH,
    DENYLIST_DB_PATH,
    GRACE_PERIOD_DAYS,
    IMAP_EMAIL,
    IMAP_PASSWORD,
    IMAP_SERVER,
    OLLAMA_BASE_URL,
    OLLAMA_KEEP_ALIVE,
    OLLAMA_MODEL,
    SLACK_BOT_TOKEN,
    SLACK_CHANNEL_ID,
)

logger = logging.getLogger("bouncer")


def _validate_config() -> None:
    """Fail loudly if required config is missing."""
    missing = []
    if not IMAP_SERVER:
        missing.append("IMAP_SERVER")
    if not IMAP_EMAIL:
        missing.append("IMAP_EMAIL")
    if not IMAP_PASSWORD:
        missing.append("IMAP_PASSWORD")
    if missing:
        click.echo(f"Error: Missing required config: {', '.join(missing)}", err=True)
        click.echo("Set these in secrets/internal.env or via SOPS.", err=True)
        sys.exit(1)


def _open_rows(*, in_memory_copy: bool = False):
    """Open the denylist row store, optionally as a throwaway in-memory copy."""
    from bouncer.schemas.denylist import DENYLIST_COLUMNS
    from bouncer.storage import MemoryRowStore, SqliteRowStore

    rows = SqliteRowStore(DENYLIST_DB_PATH, "denylist", DENYLIST_COLUMNS)
    if not in_memory_copy:
        return rows
    copy = MemoryRowStore(DENYLIST_COLUMNS)
    for row in rows.scan():
        copy.append(row.values)
    rows.close()
    return copy


def _open_store(*, in_memory_copy: bool = False):
    from bouncer.denylist import DenylistStore

    rows = _open_rows(in_memory_copy=in_memory_copy)
    return rows, DenylistStore(rows, grace_period_days=GRACE_PERIOD_DAYS)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """bouncer - inbox triage with a self-maintaining sender denylist."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# ------------------------------------------------------------------
# bouncer run
# ------------------------------------------------------------------


@cli.command()
@click.option("--limit", "-n", default=0, show_default=True, help="Max messages (0 = configured cap).")
@click.option("--model", "-m", default=None, help="Ollama model name (auto-detected if omitted).")
@click.option("--dry-run", is_flag=True, help="Classify and log only; no mailbox or denylist changes.")
def run(limit: int, model: str | None, dry_run: bool) -> None:
    """Triage one batch of unseen messages."""
    _validate_config()
    asyncio.run(_run_async(limit, model or OLLAMA_MODEL or None, dry_run))


async def _run_async(limit: int, model: str | None, dry_run: bool) -> None:
    from bouncer.audit.logger import AuditLog
    from bouncer.config import (
        classifier_fallback_label,
        classifier_reply_format,
        load_account,
        load_policy,
        load_run_settings,
    )
    from bouncer.engine.triage import TriageEngine
    from bouncer.executors.classifier import RetryingClassifier
    from bouncer.integrations.imap import ImapClient
    from bouncer.integrations.ollama import OllamaClient
    from bouncer.integrations.slack import SlackClient
    from bouncer.notify.batcher import NotificationBatcher
    from bouncer.orchestrator.runner import BatchRunner

    policy = load_policy()
    settings = load_run_settings()
    audit_log = AuditLog(AUDIT_LOG_PATH)

    async with AsyncExitStack() as stack:
        ollama = await stack.enter_async_context(
            OllamaClient(OLLAMA_BASE_URL, default_keep_alive=OLLAMA_KEEP_ALIVE)
        )
        if model is None:
            model = await ollama.pick_instruct_model()
            if model is None:
                click.echo("Error: No models available on Ollama server.", err=True)
                sys.exit(1)
            click.echo(f"Auto-selected model: {model}")

        rows, store = _open_store(in_memory_copy=dry_run)
        stack.callback(rows.close)

        classifier = RetryingClassifier(
            ollama,
            model=model,
            max_retries=API_RETRY_MAX,
            retry_delay_seconds=API_RETRY_DELAY_SECONDS,
            retryable_statuses=API_RETRYABLE_STATUSES,
            fallback_label=classifier_fallback_label(),
            reply_format=classifier_reply_format(),
        )
        engine = TriageEngine(store, classifier, policy)

        batcher = None
        if SLACK_BOT_TOKEN and SLACK_CHANNEL_ID:
            slack = await stack.enter_async_context(SlackClient(SLACK_BOT_TOKEN))
            batcher = NotificationBatcher(store, slack, channel_id=SLACK_CHANNEL_ID)
        else:
            logger.warning("SLACK_BOT_TOKEN/SLACK_CHANNEL_ID not set; denylist announcements disabled")

        imap = await stack.enter_async_context(ImapClient(load_account()))
        runner = BatchRunner(
            mailbox=imap,
            engine=engine,
            store=store,
            audit_log=audit_log,
            settings=settings,
            batcher=batcher,
            dry_run=dry_run,
            on_progress=click.echo,
        )
        await runner.run_once(limit=limit or None)


# ------------------------------------------------------------------
# bouncer announce
# ------------------------------------------------------------------


@cli.command()
def announce() -> None:
    """Announce denylist entries that were never announced."""
    if not SLACK_BOT_TOKEN or not SLACK_CHANNEL_ID:
        click.echo("Error: SLACK_BOT_TOKEN and SLACK_CHANNEL_ID are required.", err=True)
        sys.exit(1)
    count = asyncio.run(_announce_async())
    if count:
        click.echo(f"Announced {count} sender(s).")
    else:
        click.echo("Nothing announced.")


async def _announce_async() -> int:
    from bouncer.integrations.slack import SlackClient
    from bouncer.notify.batcher import NotificationBatcher

    rows, store = _open_store()
    try:
        async with SlackClient(SLACK_BOT_TOKEN) as slack:
            batcher = NotificationBatcher(store, slack, channel_id=SLACK_CHANNEL_ID)
            return await batcher.announce_pending()
    finally:
        rows.close()


# ------------------------------------------------------------------
# bouncer audit
# ------------------------------------------------------------------


@cli.command()
@click.option("--hours", default=24, show_default=True, help="Lookback period in hours.")
@click.option("--show/--no-show", default=True, show_default=True, help="List individual entries.")
def audit(hours: int, show: bool) -> None:
    """Show triage decisions from the recent period."""
    from datetime import UTC, datetime, timedelta

    from bouncer.audit.logger import AuditLog

    audit_log = AuditLog(AUDIT_LOG_PATH)
    since = datetime.now(UTC) - timedelta(hours=hours)
    entries = audit_log.read_entries(since=since)

    click.echo(f"Triage decisions (last {hours}h): {len(entries)}")
    for action, count in audit_log.count_by_action(since=since).items():
        click.echo(f"  {action.value + ':':<26}{count}")

    if show:
        for e in entries:
            click.echo(
                f"{e.timestamp:%Y-%m-%d %H:%M} {e.action.value:<24} {e.sender} | {e.subject}"
            )


# ------------------------------------------------------------------
# bouncer denylist ...
# ------------------------------------------------------------------


@cli.group()
def denylist() -> None:
    """Inspect and edit the sender denylist."""


@denylist.command("list")
def denylist_list() -> None:
    """Show every denylisted sender."""
    rows, store = _open_store()
    try:
        entries = store.entries()
        if not entries:
            click.echo("The denylist is empty.")
            return
        for e in entries:
            flags = []
            if store.in_grace_period(e):
                flags.append("grace")
            if not e.announced:
                flags.append("unannounced")
            click.echo(
                f"{e.address:<40} {e.source.value:<7} added {e.added_at:%Y-%m-%d} "
                f"seen {e.last_confirmed_at:%Y-%m-%d}"
                + (f" [{', '.join(flags)}]" if flags else "")
            )
        click.echo(f"\n{len(entries)} sender(s)")
    finally:
        rows.close()


@denylist.command("add")
@click.argument("address")
def denylist_add(address: str) -> None:
    """Add ADDRESS to the denylist (source=manual)."""
    from bouncer.schemas.denylist import DenylistSource

    rows, store = _open_store()
    try:
        existed = store.lookup(address).found
        entry = store.add(address, DenylistSource.MANUAL)
        if entry is None:
            click.echo(f"Error: '{address}' is not a valid address.", err=True)
            sys.exit(1)
        if existed:
            click.echo(f"'{entry.address}' is already on the denylist (confirmed).")
        else:
            click.echo(f"Added '{entry.address}' to the denylist.")
    finally:
        rows.close()


@denylist.command("remove")
@click.argument("address")
def denylist_remove(address: str) -> None:
    """Remove ADDRESS from the denylist."""
    rows, store = _open_store()
    try:
        if store.remove(address):
            click.echo(f"Removed '{address.strip().lower()}' from the denylist.")
        else:
            click.echo(f"'{address}' is not on the denylist.")
    finally:
        rows.close()

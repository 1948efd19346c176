"""
meterflex CLI

Command-line access to a Meter node through the meterflex SDK.

Commands:
  status    - Genesis, head and sync progress
  watch     - Follow new heads as they arrive
  block     - Show a block
  tx        - Show a transaction (and its receipt)
  account   - Show account balances, code or storage
  logs      - Query event or transfer logs
  staking   - List candidates, buckets, stakeholders or delegates
  auction   - Show the present auction or past summaries
  whoami    - Show the local wallet address
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any, Awaitable, Callable, Optional, TypeVar

import click
from loguru import logger

from .config import FlexConfig
from .errors import FlexError
from .meter import Meter
from .models import Event, Head, Transfer
from .utils import MAX_BLOCK_NUMBER
from .wallet import get_address, load_private_key

VERSION = "0.1.0"

T = TypeVar("T")


# ============ Banner ============


def _print_banner() -> None:
    click.echo(
        click.style("  ◆ ", fg="cyan")
        + click.style("M E T E R F L E X", fg="bright_white", bold=True)
        + click.style(f"  v{VERSION}", dim=True)
    )
    click.echo()


def _field(label: str, value: Any) -> None:
    click.echo(click.style(f"  {label:<14}", dim=True) + click.style(str(value), fg="bright_white"))


# ============ Runner ============


def _setup_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(lambda message: click.echo(message, err=True, nl=False), level="DEBUG" if verbose else "WARNING")
    logger.enable("meterflex")


def _run(ctx: click.Context, work: Callable[[Meter], Awaitable[T]]) -> T:
    """Connect, run ``work`` against the Meter, always close."""
    config: FlexConfig = ctx.obj["config"]

    async def runner() -> T:
        meter = await Meter.connect(config)
        try:
            return await work(meter)
        finally:
            await meter.close()

    try:
        return asyncio.run(runner())
    except FlexError as exc:
        click.secho(f"ERROR: {exc}", fg="red", err=True)
        sys.exit(exc.exit_code)


def _not_found(what: str) -> None:
    click.echo(f"{what} not found.")
    sys.exit(1)


def _print_head(head: Head) -> None:
    click.echo(f"#{head.number}  {head.id}  ts={head.timestamp}")


# ============ Main CLI Group ============


@click.group(invoke_without_command=True)
@click.version_option(version=VERSION, prog_name="meterflex")
@click.option("--node-url", envvar="METER_NODE_URL", default=None, help="Node REST endpoint")
@click.option("--verbose", "-v", is_flag=True, help="Log SDK activity to stderr")
@click.pass_context
def cli(ctx: click.Context, node_url: Optional[str], verbose: bool) -> None:
    """meterflex - Meter node client."""
    _setup_logging(verbose)
    try:
        config = FlexConfig.from_env(node_url=node_url)
    except FlexError as exc:
        click.secho(f"ERROR: {exc}", fg="red", err=True)
        sys.exit(exc.exit_code)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config

    if ctx.invoked_subcommand is None:
        _print_banner()
        click.echo(ctx.get_help())


# ============ Chain ============


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show genesis, head and sync progress."""

    async def work(meter: Meter) -> None:
        st = meter.status
        _field("Genesis:", meter.genesis.id)
        _field("Head:", f"#{st.head.number} {st.head.id}")
        _field("Progress:", f"{st.progress * 100:.2f}%")

    _run(ctx, work)


@cli.command()
@click.option("-n", "count", type=click.IntRange(min=1), default=1, show_default=True, help="Heads to wait for")
@click.pass_context
def watch(ctx: click.Context, count: int) -> None:
    """Print the next N heads as they arrive."""

    async def work(meter: Meter) -> None:
        ticker = meter.ticker()
        for _ in range(count):
            head = await ticker.next()
            if head is None:
                return
            _print_head(head)

    _run(ctx, work)


@cli.command()
@click.argument("revision", required=False)
@click.pass_context
def block(ctx: click.Context, revision: Optional[str]) -> None:
    """Show a block by number or id (default: head)."""
    rev: Any = int(revision) if revision is not None and revision.isdigit() else revision

    async def work(meter: Meter) -> Any:
        return await meter.block(rev).get()

    found = _run(ctx, work)
    if found is None:
        _not_found("Block")
    _field("Number:", found.number)
    _field("Id:", found.id)
    _field("Parent:", found.parent_id)
    _field("Timestamp:", found.timestamp)
    _field("Signer:", found.signer)
    _field("Gas used:", f"{found.gas_used}/{found.gas_limit}")
    _field("Txs:", len(found.transactions))
    for tx_id in found.transactions:
        click.echo(f"    {tx_id}")


@cli.command()
@click.argument("tx_id")
@click.option("--receipt", is_flag=True, help="Also show the receipt")
@click.pass_context
def tx(ctx: click.Context, tx_id: str, receipt: bool) -> None:
    """Show a transaction."""

    async def work(meter: Meter) -> Any:
        visitor = meter.transaction(tx_id)
        found = await visitor.get()
        rcpt = await visitor.get_receipt() if receipt and found is not None else None
        return found, rcpt

    found, rcpt = _run(ctx, work)
    if found is None:
        _not_found("Transaction")
    _field("Id:", found.id)
    _field("Origin:", found.origin)
    _field("Gas:", found.gas)
    _field("Clauses:", len(found.clauses))
    if found.meta is not None:
        _field("Block:", f"#{found.meta.block_number} {found.meta.block_id}")
    else:
        _field("Block:", "pending")
    if receipt:
        if rcpt is None:
            _field("Receipt:", "none")
        else:
            _field("Reverted:", rcpt.reverted)
            _field("Gas used:", rcpt.gas_used)
            _field("Paid:", rcpt.paid)


@cli.command()
@click.argument("address")
@click.option("--code", "show_code", is_flag=True, help="Show deployed code")
@click.option("--storage", "storage_key", default=None, help="Show the storage slot at KEY")
@click.pass_context
def account(ctx: click.Context, address: str, show_code: bool, storage_key: Optional[str]) -> None:
    """Show account state at the head."""

    async def work(meter: Meter) -> None:
        visitor = meter.account(address)
        acc = await visitor.get()
        _field("Address:", visitor.address)
        _field("Balance:", acc.balance)
        _field("Energy:", acc.energy)
        _field("Bound:", f"{acc.bound_balance} / {acc.bound_energy}")
        _field("Has code:", acc.has_code)
        if show_code:
            _field("Code:", (await visitor.get_code()).code)
        if storage_key is not None:
            _field("Storage:", (await visitor.get_storage(storage_key)).value)

    _run(ctx, work)


# ============ Logs ============


def _print_log(row: Any) -> None:
    meta = row.meta
    where = f"#{meta.block_number}:{meta.log_index if meta.log_index is not None else '-'}" if meta else "#?"
    if isinstance(row, Event):
        topic = row.topics[0] if row.topics else "-"
        click.echo(f"{where}  {row.address}  {topic}")
    elif isinstance(row, Transfer):
        click.echo(f"{where}  {row.sender} -> {row.recipient}  {row.amount}")


@cli.command()
@click.argument("kind", type=click.Choice(["event", "transfer"]))
@click.option("--from", "start", type=click.IntRange(min=0), default=0, show_default=True)
@click.option("--to", "end", type=click.IntRange(min=0), default=MAX_BLOCK_NUMBER)
@click.option("--unit", type=click.Choice(["block", "time"]), default="block", show_default=True)
@click.option("--order", type=click.Choice(["asc", "desc"]), default="asc", show_default=True)
@click.option("--offset", type=click.IntRange(min=0), default=0, show_default=True)
@click.option("--limit", type=click.IntRange(min=0, max=256), default=10, show_default=True)
@click.option("--address", default=None, help="Emitting contract (event)")
@click.option("--topic0", default=None, help="First topic (event)")
@click.option("--sender", default=None, help="Sender (transfer)")
@click.option("--recipient", default=None, help="Recipient (transfer)")
@click.pass_context
def logs(
    ctx: click.Context,
    kind: str,
    start: int,
    end: int,
    unit: str,
    order: str,
    offset: int,
    limit: int,
    address: Optional[str],
    topic0: Optional[str],
    sender: Optional[str],
    recipient: Optional[str],
) -> None:
    """Query event or transfer logs."""
    if kind == "event":
        criteria = {"address": address, "topic0": topic0}
    else:
        criteria = {"sender": sender, "recipient": recipient}
    criteria = {k: v for k, v in criteria.items() if v is not None}

    async def work(meter: Meter) -> list:
        f = meter.filter(kind).range({"unit": unit, "from": start, "to": end}).order(order)
        if criteria:
            f = f.criteria([criteria])
        return await f.apply(offset, limit)

    rows = _run(ctx, work)
    if not rows:
        click.echo("No logs.")
        return
    for row in rows:
        _print_log(row)


# ============ Staking / Auction ============


@cli.command()
@click.argument("what", type=click.Choice(["candidates", "buckets", "stakeholders", "delegates"]))
@click.pass_context
def staking(ctx: click.Context, what: str) -> None:
    """List staking entities."""

    async def work(meter: Meter) -> list:
        return await getattr(meter, what)()

    items = _run(ctx, work)
    click.echo(f"{what.capitalize()}: {len(items)}")
    for item in items:
        if what == "candidates":
            click.echo(f"  {item.address}  {item.name}  votes={item.total_votes}")
        elif what == "buckets":
            click.echo(f"  {item.id}  owner={item.owner}  value={item.value}")
        elif what == "stakeholders":
            click.echo(f"  {item.holder}  stake={item.total_stake}")
        else:
            click.echo(f"  {item.address}  {item.name}  power={item.voting_power}")


@cli.command()
@click.option("--summaries", is_flag=True, help="Show finished auctions instead")
@click.pass_context
def auction(ctx: click.Context, summaries: bool) -> None:
    """Show the present auction."""

    async def work(meter: Meter) -> Any:
        if summaries:
            return await meter.auction_summaries()
        return await meter.auction()

    result = _run(ctx, work)
    if summaries:
        click.echo(f"Auctions: {len(result)}")
        for s in result:
            click.echo(f"  {s.auction_id}  #{s.start_height}-#{s.end_height}  price={s.actual_price}")
        return
    _field("Auction:", result.auction_id or "-")
    _field("Heights:", f"#{result.start_height}-#{result.end_height}")
    _field("Released:", result.released_mtrg)
    _field("Received:", result.received_mtr)
    _field("Bids:", len(result.auction_txs))


# ============ Identity ============


@cli.command()
def whoami() -> None:
    """Show the local wallet address."""
    try:
        pk = load_private_key()
        address = get_address(pk)
        click.echo(f"Address: {address}")
    except ValueError:
        click.echo("No wallet found.")
        click.echo("Set PRIVATE_KEY in ~/.meterflex/.env")
        sys.exit(1)
    except FlexError as exc:
        click.secho(f"ERROR: {exc}", fg="red", err=True)
        sys.exit(exc.exit_code)


# ============ Entry Points ============


def main() -> None:
    """meterflex CLI entry point."""
    if sys.platform == "win32":
        try:
            sys.stdout.reconfigure(encoding="utf-8")  # type: ignore[union-attr]
            sys.stderr.reconfigure(encoding="utf-8")  # type: ignore[union-attr]
        except (AttributeError, OSError):
            pass
    cli()


if __name__ == "__main__":
    main()

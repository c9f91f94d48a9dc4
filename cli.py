#!/usr/bin/env python3
"""
Volatility vault command line.

Examples:
    python cli.py orderbook
    python cli.py place --keypair ~/.config/solana/id.json --side LONG --points 2.0 --amount 1
    python cli.py cancel 42 --keypair ~/.config/solana/id.json
    python cli.py positions <wallet-address>
    python cli.py claim 42 --keypair ~/.config/solana/id.json
    python cli.py payouts STAY_IN --principal 5
    python cli.py reconcile --keypair ~/.config/solana/id.json
    python cli.py watch <wallet-address> --interval 5
"""
from __future__ import annotations

import asyncio
import json
import sys
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from solders.keypair import Keypair

import payout_curve
from config import get_config
from container import ServiceContainer, get_container
from execution.models import OrderResult, Position, PositionType

app = typer.Typer(help="Volatility vault: orders, positions and vault transfers")
console = Console()


@app.callback()
def main(log_level: Optional[str] = typer.Option(None, "--log-level", "-l",
                                                 help="Override LOG_LEVEL")):
    logger.remove()
    logger.add(sys.stderr, level=(log_level or get_config().log_level).upper())


# ── Helpers ──────────────────────────────────────────────────────────────────

def load_keypair(path: Path) -> Keypair:
    """Solana CLI keypair file: a JSON array of 64 secret-key bytes."""
    raw = json.loads(Path(path).expanduser().read_text())
    return Keypair.from_bytes(bytes(raw))


def _run(work):
    async def _with_container():
        container = get_container()
        try:
            return await work(container)
        finally:
            await container.close()
    return asyncio.run(_with_container())


def _report(result: OrderResult, ok_message: str) -> None:
    if result.success:
        console.print(f"[green]✓ {ok_message}[/green] tx={result.tx_hash}")
        return
    console.print(f"[red]✗ {result.error}[/red]" +
                  (f" tx={result.tx_hash}" if result.tx_hash else ""))
    raise typer.Exit(1)


def _positions_table(wallet_address: str, positions: List[Position]) -> Table:
    table = Table(title=f"Positions {wallet_address[:8]}…", header_style="bold magenta")
    for col in ("Order", "Type", "Band", "Amount", "Status", "Payout %", "Payout", "Payout leg"):
        table.add_column(col)
    for p in positions:
        table.add_row(
            str(p.order_id), p.position_type.name, f"{p.lower_bound}–{p.upper_bound}",
            f"{p.amount}", p.status.value,
            "" if p.payout_percentage is None else f"{p.payout_percentage}%",
            "" if p.payout_amount is None else f"{p.payout_amount}",
            p.payout_status.value if p.payout_status else "")
    return table


# ── Orders ───────────────────────────────────────────────────────────────────

@app.command()
def orderbook():
    """Aggregated depth of live orders per side and points."""
    async def work(c: ServiceContainer):
        return await c.orders.fetch_orderbook()
    book = _run(work)
    for title, levels, style in (("LONG (Breakout)", book.long_orders, "green"),
                                 ("SHORT (Stay-In)", book.short_orders, "red")):
        table = Table(title=title, header_style=f"bold {style}")
        table.add_column("Points", justify="right")
        table.add_column("Total SOL", justify="right")
        for level in levels:
            table.add_row(f"{level.points}", f"{level.total_amount}")
        console.print(table)


@app.command()
def orders(wallet_address: str = typer.Argument(..., help="Wallet public key")):
    """A wallet's orders, newest first."""
    async def work(c: ServiceContainer):
        return await c.orders.fetch_user_orders(wallet_address)
    rows = _run(work)
    table = Table(header_style="bold magenta")
    for col in ("ID", "Side", "Points", "Amount", "Filled", "Status", "Tx"):
        table.add_column(col)
    for o in rows:
        table.add_row(str(o.id), o.side.value, f"{o.points}", f"{o.amount}",
                      f"{o.filled_amount}", o.status.value, (o.txn_hash or "")[:16])
    console.print(table)


@app.command()
def balance(wallet_address: str = typer.Argument(..., help="Wallet public key")):
    """Deposited and locked totals."""
    async def work(c: ServiceContainer):
        return await c.orders.fetch_user_balance(wallet_address)
    bal = _run(work)
    if bal is None:
        console.print("[yellow]No balance recorded for this wallet[/yellow]")
        return
    console.print(Panel.fit(f"Deposited: {bal.total_deposited} SOL\n"
                            f"Locked:    {bal.locked_amount} SOL\n"
                            f"Updated:   {bal.updated_at:%Y-%m-%d %H:%M:%S}",
                            title=wallet_address[:8], border_style="cyan"))


@app.command()
def place(
    keypair: Path = typer.Option(..., "--keypair", "-k", help="Signer keypair JSON"),
    side: str = typer.Option(..., "--side", "-s", help="LONG (Breakout) or SHORT (Stay-In)"),
    points: str = typer.Option(..., "--points", "-p", help="Volatility band, 0.1-10.0"),
    amount: str = typer.Option(..., "--amount", "-a", help="SOL to lock"),
):
    """Deposit into the vault and open an order."""
    wallet = load_keypair(keypair)
    async def work(c: ServiceContainer):
        return await c.orders.place_order(wallet, amount, side, points)
    result = _run(work)
    _report(result, f"Order {result.order_id} placed")


@app.command()
def cancel(
    order_id: int = typer.Argument(...),
    keypair: Path = typer.Option(..., "--keypair", "-k", help="Signer keypair JSON"),
):
    """Cancel an order and withdraw its unfilled remainder."""
    wallet = load_keypair(keypair)
    async def work(c: ServiceContainer):
        return await c.orders.cancel_order(wallet, order_id)
    _report(_run(work), f"Order {order_id} cancelled")


# ── Positions ────────────────────────────────────────────────────────────────

@app.command()
def positions(wallet_address: str = typer.Argument(..., help="Wallet public key")):
    """A wallet's positions, newest first."""
    async def work(c: ServiceContainer):
        return await c.positions.fetch_user_positions(wallet_address)
    console.print(_positions_table(wallet_address, _run(work)))


@app.command()
def claim(
    order_id: int = typer.Argument(...),
    keypair: Path = typer.Option(..., "--keypair", "-k", help="Signer keypair JSON"),
    payout: Optional[str] = typer.Option(None, "--payout",
                                         help="Override payout amount (SOL)"),
):
    """Claim a settled position and withdraw its payout."""
    wallet = load_keypair(keypair)
    async def work(c: ServiceContainer):
        return await c.positions.claim_position(
            wallet, order_id, Decimal(payout) if payout is not None else None)
    _report(_run(work), f"Position {order_id} claimed")


@app.command()
def payouts(
    position_type: str = typer.Argument(..., help="STAY_IN or BREAKOUT"),
    principal: str = typer.Option("1", "--principal", help="Principal in SOL"),
):
    """Payout schedule at each anchor hour."""
    ptype = PositionType[position_type.upper()]
    table = Table(title=f"{ptype.name} payout curve", header_style="bold cyan")
    for col in ("Hours", "Payout %", "Amount", "Result"):
        table.add_column(col, justify="right")
    for hours, pct, amount in payout_curve.payout_table(ptype, Decimal(principal)):
        result = "[green]WIN[/green]" if payout_curve.is_win(pct) else "[red]LOSS[/red]"
        table.add_row(str(hours), f"{pct}%", f"{amount}", result)
    console.print(table)


# ── Maintenance ──────────────────────────────────────────────────────────────

@app.command()
def reconcile(
    keypair: List[Path] = typer.Option([], "--keypair", "-k",
                                       help="Signer(s) allowed to re-drive ledger legs"),
):
    """Replay transfer intents left open by an interrupted run."""
    signers: Dict[str, Keypair] = {}
    for path in keypair:
        kp = load_keypair(path)
        signers[str(kp.pubkey())] = kp

    async def work(c: ServiceContainer):
        c.override(signer_for=signers.get)
        return await c.reconciler.replay()
    summary = _run(work)
    table = Table(title="Reconciliation", header_style="bold magenta")
    table.add_column("Outcome")
    table.add_column("Intents", justify="right")
    for outcome, count in summary.items():
        table.add_row(outcome, str(count))
    console.print(table)


@app.command()
def watch(
    wallet_address: str = typer.Argument(..., help="Wallet public key"),
    interval: Optional[float] = typer.Option(None, "--interval", "-i",
                                             help="Poll seconds (default POSITIONS_POLL_SEC)"),
    duration: float = typer.Option(0, "--duration", "-d", help="Stop after N seconds; 0 = forever"),
):
    """Print a wallet's positions whenever they change."""
    def show(rows: List[Position]) -> None:
        console.print(_positions_table(wallet_address, rows))

    async def work(c: ServiceContainer):
        show(await c.positions.fetch_user_positions(wallet_address))
        feed = c.positions.subscribe(wallet_address, show, interval)
        await feed.start()
        try:
            if duration > 0:
                await asyncio.sleep(duration)
            else:
                await asyncio.Event().wait()
        finally:
            await feed.stop()

    try:
        _run(work)
    except KeyboardInterrupt:
        console.print("[yellow]stopped[/yellow]")


if __name__ == "__main__":
    app()

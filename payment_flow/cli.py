"""CLI for the bank-transfer payment flow.

Drives one payment against the bill tracker backend from the terminal:
list enabled banks, open a transfer, then confirm or cancel it.
"""

import asyncio
from typing import List, Optional, Tuple

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from payment_flow.config import get_settings
from payment_flow.core import AbandonmentGuard, PaymentFlowController
from payment_flow.domain import (
    BankDestination,
    BillType,
    ConfirmationError,
    PaymentFlowError,
    Transaction,
)
from payment_flow.integrations import (
    BackendHttpClient,
    CachedPaymentMethodCatalog,
    HttpPaymentMethodCatalog,
    HttpTransactionGateway,
)
from payment_flow.monitoring import setup_logging

app = typer.Typer(
    name="payment-flow",
    help="Bank transfer payments for the room bill tracker",
    add_completion=False,
)

console = Console()


def _configure_logging(verbose: bool) -> None:
    settings = get_settings()
    if verbose:
        settings = settings.model_copy(update={"log_level": "DEBUG"})
    setup_logging(settings)


def _banks_table(banks: List[BankDestination]) -> Table:
    table = Table(title="Enabled banks")
    table.add_column("Bank", style="cyan")
    table.add_column("Account name")
    table.add_column("Account number", style="green")
    for bank in banks:
        table.add_row(bank.bank_name, bank.account_name, bank.account_number)
    return table


def _transfer_panel(transaction: Transaction, banks: List[BankDestination]) -> Panel:
    destination = next((b for b in banks if b.bank_name == transaction.bank_name), None)
    lines = [
        f"[bold]Amount:[/bold] {transaction.amount}",
        f"[bold]Bank:[/bold] {transaction.bank_name}",
    ]
    if destination:
        lines.append(f"[bold]Account:[/bold] {destination.account_name} {destination.account_number}")
    lines.append(f"[bold]Reference:[/bold] [yellow]{transaction.reference_number}[/yellow]")
    if transaction.qr_data:
        qr = transaction.qr_data
        lines.append(f"[bold]QR payload:[/bold] {qr.type} {qr.amount} {qr.reference}")
    if transaction.instructions:
        lines.append("")
        lines.append(transaction.instructions)
    return Panel("\n".join(lines), title="Transfer details", border_style="blue")


async def _abandon(guard: AbandonmentGuard) -> None:
    guard.on_navigation_back()
    await guard.wait_pending()


@app.command()
def banks(
    room: str = typer.Option(..., "--room", "-r", help="Room ID"),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output",
    ),
) -> None:
    """List the banks a room accepts transfers to."""
    _configure_logging(verbose)

    async def _list() -> Tuple[List[BankDestination], str]:
        async with BackendHttpClient(get_settings()) as client:
            catalog = HttpPaymentMethodCatalog(client)
            found = await catalog.list_enabled_banks(room)
            return found, catalog.maintenance_message(room)

    try:
        enabled, notice = asyncio.run(_list())
    except PaymentFlowError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if not enabled:
        console.print("[yellow]No bank accounts are configured for this room.[/yellow]")
        if notice:
            console.print(notice)
        return
    console.print(_banks_table(enabled))


@app.command()
def pay(
    room: str = typer.Option(..., "--room", "-r", help="Room ID"),
    amount: str = typer.Option(..., "--amount", "-a", help="Amount to transfer"),
    bill_type: BillType = typer.Option(
        BillType.TOTAL,
        "--bill-type",
        "-t",
        case_sensitive=False,
        help="Bill being paid",
    ),
    bank: Optional[str] = typer.Option(
        None,
        "--bank",
        "-b",
        help="Destination bank (defaults to the first enabled bank)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output",
    ),
) -> None:
    """Open a bank transfer, then confirm or cancel it."""
    _configure_logging(verbose)

    settings = get_settings()
    loop = asyncio.new_event_loop()
    client = BackendHttpClient(settings)
    controller = PaymentFlowController(
        room_id=room,
        amount=amount,
        bill_type=bill_type,
        gateway=HttpTransactionGateway(client),
        catalog=CachedPaymentMethodCatalog(HttpPaymentMethodCatalog(client)),
        bank_name=bank or "",
    )
    guard = AbandonmentGuard(controller, loop=loop)

    try:
        enabled = loop.run_until_complete(controller.load_banks())
        if not enabled:
            console.print("[yellow]No bank accounts are configured for this room.[/yellow]")
            raise typer.Exit(1)
        if bank:
            controller.select_bank(bank)

        transaction = loop.run_until_complete(controller.initiate())
        console.print(_transfer_panel(transaction, enabled))

        while True:
            try:
                choice = Prompt.ask(
                    "Send the transfer from your bank app, then",
                    choices=["confirm", "cancel"],
                    default="confirm",
                    console=console,
                )
            except (KeyboardInterrupt, EOFError):
                loop.run_until_complete(_abandon(guard))
                console.print("\n[yellow]Payment abandoned.[/yellow] The pending transfer was cancelled.")
                raise typer.Exit(130)

            if choice == "cancel":
                loop.run_until_complete(controller.cancel())
                console.print("[yellow]Transfer cancelled.[/yellow]")
                return

            try:
                confirmed = loop.run_until_complete(controller.confirm())
            except ConfirmationError as e:
                console.print(f"[red]Confirmation failed:[/red] {e}. You can try again or cancel.")
                continue

            message = controller.last_receipt.message if controller.last_receipt else ""
            console.print(
                f"\n[green]Success![/green] Transfer {confirmed.reference_number} recorded. {message}"
            )
            return

    except PaymentFlowError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    finally:
        guard.on_unmount()
        controller.close()
        loop.run_until_complete(guard.wait_pending())
        loop.run_until_complete(client.aclose())
        loop.close()


def main() -> None:
    """Entry point for the payment-flow console script."""
    app()


if __name__ == "__main__":
    main()

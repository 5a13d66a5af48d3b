"""Command-line interface for the Fall Fest referral program."""

import asyncio
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from fallfest.logging_config import configure_logging, get_logger
from fallfest.referral.codes import CodeGenerator
from fallfest.referral.errors import ReferralError
from fallfest.referral.leaderboard import Leaderboard
from fallfest.referral.service import ReferralService
from fallfest.referral.store import ParticipantStore
from fallfest.settings import settings
from fallfest.storage import build_store

configure_logging()
logger = get_logger(__name__)

app = typer.Typer(
    name="fallfest",
    help="Qiskit Fall Fest - registration and referral program",
    no_args_is_help=True,
)

console = Console()


def _run(coro_factory):
    """Run an async command against a fresh store and close it afterwards."""

    async def runner():
        store = build_store()
        try:
            return await coro_factory(store)
        finally:
            await store.close()

    try:
        return asyncio.run(runner())
    except ReferralError as e:
        console.print(f"[bold red]✗[/bold red] {e.message} ({e.code.value})")
        raise typer.Exit(code=1)


@app.command("init")
def init_database() -> None:
    """Initialize the local database and create tables."""
    from fallfest.storage.db import Database

    console.print("[bold blue]Initializing database...[/bold blue]")
    Database().create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("generate-code")
def generate_code(
    count: Annotated[int, typer.Option("--count", "-n", help="Number of codes to draw")] = 1,
) -> None:
    """Draw referral codes not yet used by any participant."""

    async def command(store: ParticipantStore) -> list[str]:
        generator = CodeGenerator(store)
        return [await generator.generate_unique_code() for _ in range(count)]

    for code in _run(command):
        console.print(code)


@app.command("count")
def count_referrals(
    participant_id: Annotated[int, typer.Argument(help="Participant ID")],
) -> None:
    """Show how many participants someone referred."""

    async def command(store: ParticipantStore) -> int:
        return await Leaderboard(store).count_referrals(participant_id)

    total = _run(command)
    console.print(f"Participant [bold]{participant_id}[/bold] referred [bold cyan]{total}[/bold cyan] people")


@app.command("leaderboard")
def show_leaderboard(
    limit: Annotated[int, typer.Option("--limit", "-l", help="Number of entries")] = settings.leaderboard_limit,
) -> None:
    """Show the top referrers."""

    async def command(store: ParticipantStore):
        return await Leaderboard(store).top_referrers(limit)

    entries = _run(command)
    if not entries:
        console.print("[yellow]No referrals yet[/yellow]")
        return

    table = Table(title=f"Top {limit} Referrers")
    table.add_column("Rank", justify="right")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Institution")
    table.add_column("Referrals", justify="right", style="bold")

    for rank, entry in enumerate(entries, start=1):
        table.add_row(
            str(rank),
            str(entry.participant.id),
            entry.participant.display_name,
            entry.participant.institution or "-",
            str(entry.count),
        )

    console.print(table)


@app.command("summary")
def show_summary(
    user_id: Annotated[str, typer.Argument(help="Identity-provider user ID")],
) -> None:
    """Show a participant's referral code, referrer and referred users."""

    async def command(store: ParticipantStore):
        return await ReferralService(store).get_summary(user_id)

    summary = _run(command)
    if summary is None:
        console.print(f"[yellow]User {user_id} is not registered[/yellow]")
        raise typer.Exit(code=1)

    console.print(f"Code: [bold]{summary.participant.referral_code}[/bold]")
    console.print(f"Link: {summary.link}")
    console.print(f"Referred by: {summary.referrer_code or '-'}")
    console.print(f"Total referrals: [bold cyan]{summary.total_referrals}[/bold cyan]")
    for participant in summary.referred:
        console.print(f"  • {participant.display_name}")


if __name__ == "__main__":
    app()

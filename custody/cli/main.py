"""
CLI for recording, inspecting, verifying and exporting custody ledgers.
"""

import os
import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from custody.chain.service import CustodyService
from custody.core.canon import canonical_json_str
from custody.core.errors import CustodyError
from custody.core.types import Transfer
from custody.crypto.hashing import ENTRY_MODE
from custody.storage import SQLiteStorage
from custody.verify.verifier import ChainVerifier, VerificationResult

app = typer.Typer(
    name="custody",
    help="Record, inspect, verify and export tamper-evident asset custody ledgers",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()

DbOption = typer.Option(None, "--db", help="Path to SQLite database (overrides CUSTODY_DB_PATH env var)")
ModeOption = typer.Option(
    ENTRY_MODE, "--mode", envvar="CUSTODY_FINGERPRINT_MODE",
    help="Fingerprint mode: 'entry' or 'chained' (must match the database)",
)
IdentityOption = typer.Option(
    ..., "--as", envvar="CUSTODY_IDENTITY",
    help="Caller identity performing the operation",
)


def get_db_path(db_flag: Optional[Path] = None) -> Path:
    """Resolve DB path in this order:
    1. --db flag
    2. CUSTODY_DB_PATH environment variable
    3. Default: ~/.custody/custody.db
    """
    if db_flag:
        path = db_flag.resolve()
    else:
        env_path = os.environ.get("CUSTODY_DB_PATH")
        if env_path:
            path = Path(env_path).resolve()
        else:
            path = Path.home() / ".custody" / "custody.db"

    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def open_service(db: Optional[Path], mode: str, must_exist: bool = True) -> CustodyService:
    """Open the ledger database; exits with a readable message on failure."""
    db_path = get_db_path(db)

    if must_exist and not db_path.exists():
        console.print(f"[red]Database file not found: {escape(str(db_path))}[/]")
        console.print("[yellow]To get started:[/]")
        console.print("  • Create an asset first: custody create <name> --as <identity>")
        console.print("  • Set env var: export CUSTODY_DB_PATH=/path/to/your.db")
        console.print("  • Or use --db: custody list --db /custom/path.db")
        raise typer.Exit(1)

    try:
        # The CLI is an inspection tool: archived assets stay readable
        return CustodyService(storage=SQLiteStorage(db_path), mode=mode, archived_reads=True)
    except CustodyError as e:
        console.print(f"[red]{escape(str(e))}[/]")
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"[red]Failed to open database: {escape(str(e))}[/]")
        console.print("[yellow]The file may be corrupted or not a valid custody DB.[/]")
        raise typer.Exit(1)


def fail(error: CustodyError) -> None:
    console.print(f"[red]✗ {type(error).__name__}: {escape(str(error))}[/]")
    raise typer.Exit(1)


def print_history(chain: List[Transfer]) -> None:
    table = Table(title=f"Custody history of asset {chain[0].asset_id}" if chain else "Custody history")
    table.add_column("#", justify="right")
    table.add_column("Timestamp")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Notes")
    table.add_column("Fingerprint")

    for t in chain:
        table.add_row(
            str(t.sequence),
            escape(t.timestamp),
            escape(t.from_owner or "—"),
            escape(t.to_owner),
            escape(t.notes or ""),
            escape(t.fingerprint[:12]) + "…",
        )
    console.print(table)


def print_verification(label: str, result: VerificationResult) -> None:
    if result.is_valid:
        console.print(f"[green]✓ {escape(label)} is valid[/]")
        console.print(f"  transfers: {result.transfer_count}  creator: {escape(str(result.creator))}")
        return

    console.print(f"[red]✗ Verification failed for {escape(label)}[/]")
    for failure in result.failures:
        console.print(f"  • [{failure.index}] {failure.category}: {escape(failure.message)}")
    raise typer.Exit(2)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log ledger activity to stderr"),
):
    """Manage tamper-evident custody ledgers."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        )


@app.command()
def create(
    name: str = typer.Argument(..., help="Asset name"),
    description: str = typer.Option("", "--description", "-d"),
    metadata_hash: Optional[str] = typer.Option(None, "--metadata-hash", help="External content reference"),
    identity: str = IdentityOption,
    db: Optional[Path] = DbOption,
    mode: str = ModeOption,
):
    """Create a new asset owned by the caller."""
    with open_service(db, mode, must_exist=False) as service:
        try:
            asset_id = service.create_asset(identity, name, description, metadata_hash)
        except CustodyError as e:
            fail(e)
    console.print(f"[green]Created asset {asset_id}[/] '{escape(name)}' owned by {escape(identity)}")


@app.command()
def transfer(
    asset_id: int = typer.Argument(..., help="Asset to transfer"),
    to: str = typer.Argument(..., help="Receiving identity"),
    notes: str = typer.Option("", "--notes", "-n"),
    identity: str = IdentityOption,
    db: Optional[Path] = DbOption,
    mode: str = ModeOption,
):
    """Transfer custody of an asset (caller must be the current owner)."""
    with open_service(db, mode) as service:
        try:
            entry = service.transfer_asset(identity, asset_id, to, notes)
        except CustodyError as e:
            fail(e)
    console.print(f"[green]Asset {asset_id} transferred[/] {escape(entry.from_owner)} → {escape(entry.to_owner)}")
    console.print(f"  fingerprint: {entry.fingerprint}")


@app.command()
def deactivate(
    asset_id: int = typer.Argument(..., help="Asset to archive"),
    identity: str = IdentityOption,
    db: Optional[Path] = DbOption,
    mode: str = ModeOption,
):
    """Archive an asset; no further transfers are accepted."""
    with open_service(db, mode) as service:
        try:
            service.deactivate_asset(identity, asset_id)
        except CustodyError as e:
            fail(e)
    console.print(f"[yellow]Asset {asset_id} archived[/]")


@app.command()
def show(
    asset_id: int = typer.Argument(..., help="Asset to display"),
    db: Optional[Path] = DbOption,
    mode: str = ModeOption,
):
    """Show an asset record."""
    with open_service(db, mode) as service:
        try:
            asset = service.get_asset(asset_id)
        except CustodyError as e:
            fail(e)

    table = Table(title=f"Asset {asset.id}", show_header=False)
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Name", escape(asset.name))
    table.add_row("Description", escape(asset.description or "—"))
    table.add_row("Metadata hash", escape(asset.metadata_hash or "—"))
    table.add_row("Owner", escape(asset.current_owner))
    table.add_row("Creator", escape(asset.creator))
    table.add_row("Created", escape(asset.created_at))
    table.add_row("Transfers", str(asset.transfer_count))
    table.add_row("Status", "active" if asset.active else "archived")
    console.print(table)


@app.command()
def owner(
    asset_id: int = typer.Argument(..., help="Asset to look up"),
    db: Optional[Path] = DbOption,
    mode: str = ModeOption,
):
    """Print the current owner of an asset."""
    with open_service(db, mode) as service:
        try:
            console.print(escape(service.get_owner(asset_id)))
        except CustodyError as e:
            fail(e)


@app.command()
def owned(
    identity: str = typer.Argument(..., help="Owner identity"),
    db: Optional[Path] = DbOption,
    mode: str = ModeOption,
):
    """List the asset ids an identity currently holds."""
    with open_service(db, mode) as service:
        ids = sorted(service.get_owned_assets(identity))

    if not ids:
        console.print(f"[yellow]'{escape(identity)}' holds no assets[/]")
        return
    console.print(" ".join(str(i) for i in ids))


@app.command()
def history(
    asset_id: int = typer.Argument(..., help="Asset whose ledger to show"),
    db: Optional[Path] = DbOption,
    mode: str = ModeOption,
):
    """Show the full custody history of an asset, creation first."""
    with open_service(db, mode) as service:
        try:
            chain = list(service.get_history(asset_id))
        except CustodyError as e:
            fail(e)
    print_history(chain)


@app.command("list")
def list_assets(
    db: Optional[Path] = DbOption,
    mode: str = ModeOption,
):
    """List all recorded assets with owner and transfer counts."""
    with open_service(db, mode) as service:
        assets = service.list_assets()

    if not assets:
        console.print("[yellow]No assets found in database.[/]")
        return

    table = Table(title="Recorded Assets")
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("Owner")
    table.add_column("Transfers")
    table.add_column("Status")

    for asset in assets:
        table.add_row(
            str(asset.id),
            escape(asset.name),
            escape(asset.current_owner),
            str(asset.transfer_count),
            "active" if asset.active else "archived",
        )
    console.print(table)


@app.command()
def verify(
    asset_id: int = typer.Argument(..., help="Asset to verify"),
    verifier: Optional[str] = typer.Option(None, "--as", envvar="CUSTODY_IDENTITY", help="Verifier identity"),
    db: Optional[Path] = DbOption,
    mode: str = ModeOption,
):
    """Recompute and check every fingerprint in an asset's ledger."""
    with open_service(db, mode) as service:
        try:
            result = service.verify_asset(asset_id, verifier=verifier)
        except CustodyError as e:
            fail(e)
    print_verification(f"Asset {asset_id}", result)


@app.command()
def export(
    asset_id: int = typer.Argument(..., help="Asset to export"),
    db: Optional[Path] = DbOption,
    mode: str = ModeOption,
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file (default: asset-<id>.jsonl)"),
):
    """Export an asset's ledger as JSONL (one canonical transfer per line)."""
    with open_service(db, mode) as service:
        try:
            chain = service.get_history(asset_id)
        except CustodyError as e:
            fail(e)

    out_path = output or Path(f"asset-{asset_id}.jsonl")
    with open(out_path, "w", encoding="utf-8") as f:
        for entry in chain:
            f.write(canonical_json_str(entry.to_dict()))
            f.write("\n")

    console.print(f"[green]Exported {len(chain)} transfers to {escape(str(out_path))}[/]")
    console.print("Format: JSONL — one fingerprinted transfer per line")


@app.command("verify-file")
def verify_file(
    path: Path = typer.Argument(..., help="JSONL export to verify"),
    mode: str = ModeOption,
):
    """Verify an exported ledger offline, without a database."""
    if not path.exists():
        console.print(f"[red]File not found: {escape(str(path))}[/]")
        raise typer.Exit(1)

    try:
        with open(path, "r", encoding="utf-8") as f:
            chain = [Transfer.from_dict(json.loads(line)) for line in f if line.strip()]
        result = ChainVerifier(mode).verify_chain(chain)
    except CustodyError as e:
        fail(e)
    except (ValueError, KeyError, TypeError) as e:
        console.print(f"[red]Malformed export: {escape(str(e))}[/]")
        raise typer.Exit(1)

    print_verification(str(path), result)


if __name__ == "__main__":
    app()

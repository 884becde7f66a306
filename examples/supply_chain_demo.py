"""
Supply-chain walkthrough: a pallet moves from factory to retailer, an auditor
verifies it, then somebody edits the database behind the ledger's back.

Run: python examples/supply_chain_demo.py
"""
import sqlite3
import tempfile
from pathlib import Path

from rich.console import Console

from custody import CustodyService

console = Console()


def main():
    db_path = Path(tempfile.mkdtemp()) / "supply-chain.db"

    with CustodyService(storage=f"sqlite://{db_path}") as service:
        service.subscribe(lambda event: console.print(f"[dim]event: {event}[/]"))

        pallet = service.create_asset(
            "org:factory",
            "Pallet-0042",
            description="48 x espresso machines",
            metadata_hash="sha256:9f2c0e",
        )
        service.transfer_asset("org:factory", pallet, "org:carrier", notes="picked up at dock 3")
        service.transfer_asset("org:carrier", pallet, "org:warehouse", notes="received, seal intact")
        service.transfer_asset("org:warehouse", pallet, "org:retailer", notes="store delivery")

        for entry in service.get_history(pallet):
            console.print(f"  {entry.sequence} {entry.from_owner or '—':>14} → {entry.to_owner:<14} {entry.notes}")

        valid, transfers, creator = service.verify_asset(pallet, verifier="org:auditor")
        console.print(f"[green]valid={valid} transfers={transfers} creator={creator}[/]")

    # Rewrite one leg of the journey directly in SQLite
    conn = sqlite3.connect(db_path)
    conn.execute("UPDATE transfers SET notes = 'seal broken' WHERE sequence = 2")
    conn.commit()
    conn.close()

    with CustodyService(storage=f"sqlite://{db_path}") as service:
        result = service.verify_asset(pallet, verifier="org:auditor")
        console.print(f"[red]after tampering:[/] {result}")


if __name__ == "__main__":
    main()

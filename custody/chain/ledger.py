import threading
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from custody.core.errors import LedgerIntegrityError
from custody.core.types import Transfer


class CustodyLedger:
    """
    Per-asset append-only sequence of transfer records.
    Entries are never reordered, rewritten or truncated.

    `liveness` is called with the asset id before every `history` read and is
    expected to raise NotFound / Inactive (the registry's `get` fits).
    """

    def __init__(self, liveness: Optional[Callable[[int], object]] = None):
        self._entries: Dict[int, List[Transfer]] = {}
        self._lock = threading.Lock()
        self.liveness = liveness

    def append(self, asset_id: int, transfer: Transfer) -> None:
        """Internal: only the transfer engine writes here."""
        if transfer.asset_id != asset_id:
            raise LedgerIntegrityError(
                f"Transfer for asset {transfer.asset_id} appended to ledger of asset {asset_id}"
            )
        with self._lock:
            entries = self._entries.setdefault(asset_id, [])
            if transfer.sequence != len(entries):
                raise LedgerIntegrityError(
                    f"Out-of-order append for asset {asset_id}: "
                    f"expected sequence {len(entries)}, got {transfer.sequence}"
                )
            entries.append(transfer)

    def history(self, asset_id: int) -> Tuple[Transfer, ...]:
        """Liveness-gated read of the full ledger, creation first."""
        if self.liveness is not None:
            self.liveness(asset_id)
        return self.entries(asset_id)

    def entries(self, asset_id: int) -> Tuple[Transfer, ...]:
        """Snapshot in append order, without any liveness check."""
        with self._lock:
            return tuple(self._entries.get(asset_id, ()))

    def length(self, asset_id: int) -> int:
        with self._lock:
            return len(self._entries.get(asset_id, ()))

    def last(self, asset_id: int) -> Optional[Transfer]:
        with self._lock:
            entries = self._entries.get(asset_id)
            return entries[-1] if entries else None

    def load(self, asset_id: int, transfers: Iterable[Transfer]) -> None:
        """
        Bulk-populate one asset's ledger from storage (startup only).

        Rows are taken as stored, without the append-order guard: a gap or
        renumbered row is left for the verifier to report against this asset
        instead of failing the whole load.
        """
        with self._lock:
            self._entries[asset_id] = list(transfers)

import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Dict, Iterator, Optional, Tuple

from custody.chain.ledger import CustodyLedger
from custody.chain.owners import OwnerIndex
from custody.chain.registry import AssetRegistry
from custody.core.errors import InvalidInput, LedgerIntegrityError, Unauthorized
from custody.core.types import Asset, Transfer, is_null_identity, utc_now
from custody.crypto.hashing import CHAINED_MODE, ENTRY_MODE, check_mode, seal
from custody.storage import StorageBackend

logger = logging.getLogger(__name__)


class TransferEngine:
    """
    Applies every custody-mutating operation (create, transfer, deactivate).

    Each operation validates in full, then under the asset's lock persists the
    change (when storage is attached) and applies it to the registry, ledger and
    owner index together. A storage failure raises before memory is touched.
    The apply step also holds the owner index lock, so an owner lookup waits for
    any create or transfer already writing to the registry.
    """

    def __init__(
        self,
        registry: AssetRegistry,
        ledger: CustodyLedger,
        owners: OwnerIndex,
        storage: Optional[StorageBackend] = None,
        mode: str = ENTRY_MODE,
        clock: Callable[[], str] = utc_now,
    ):
        self.registry = registry
        self.ledger = ledger
        self.owners = owners
        self.storage = storage
        self.mode = check_mode(mode)
        self.clock = clock
        self._locks: Dict[int, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def locked(self, asset_id: int) -> Iterator[None]:
        """Exclusive section for one asset; other assets proceed in parallel."""
        with self._locks_guard:
            lock = self._locks.setdefault(asset_id, threading.RLock())
        with lock:
            yield

    def _prev_fingerprint(self, asset_id: int) -> Optional[str]:
        if self.mode != CHAINED_MODE:
            return None
        last = self.ledger.last(asset_id)
        return last.fingerprint if last else None

    def create(
        self,
        name: str,
        description: str,
        metadata_hash: Optional[str],
        creator: str,
    ) -> Tuple[Asset, Transfer]:
        asset = self.registry.create(name, description, metadata_hash, creator, self.clock())
        genesis = seal(
            Transfer(
                asset_id=asset.id,
                sequence=0,
                from_owner=None,
                to_owner=creator,
                timestamp=asset.created_at,
                notes="",
            ),
            mode=self.mode,
        )

        with self.locked(asset.id):
            if self.storage:
                self.storage.record_creation(asset, genesis)
            with self.owners.locked():
                self.registry.add(asset)
                self.ledger.append(asset.id, genesis)
                self.owners.add(creator, asset.id)

        logger.info("Created asset %d '%s' for %s", asset.id, asset.name, creator)
        return asset, genesis

    def transfer(self, asset_id: int, to: Optional[str], notes: str, requester: str) -> Transfer:
        with self.locked(asset_id):
            asset = self.registry.require_active(asset_id)
            if requester != asset.current_owner:
                raise Unauthorized(asset_id, requester)
            if is_null_identity(to):
                raise InvalidInput("Transfer target identity is required")
            if to == requester:
                raise InvalidInput("Cannot transfer an asset to its current owner")

            sequence = self.ledger.length(asset_id)
            if sequence != asset.transfer_count + 1:
                raise LedgerIntegrityError(
                    f"Asset {asset_id} has transfer_count {asset.transfer_count} "
                    f"but {sequence} ledger entries"
                )

            entry = seal(
                Transfer(
                    asset_id=asset_id,
                    sequence=sequence,
                    from_owner=requester,
                    to_owner=to,
                    timestamp=self.clock(),
                    notes=notes or "",
                ),
                prev_fingerprint=self._prev_fingerprint(asset_id),
                mode=self.mode,
            )
            moved = replace(asset, current_owner=to, transfer_count=asset.transfer_count + 1)

            if self.storage:
                self.storage.record_transfer(moved, entry, previous_owner=requester)
            with self.owners.locked():
                self.registry.update(moved)
                self.owners.move(asset_id, requester, to)
                self.ledger.append(asset_id, entry)

        logger.info("Asset %d transferred %s -> %s (#%d)", asset_id, requester, to, moved.transfer_count)
        return entry

    def deactivate(self, asset_id: int, requester: str) -> Asset:
        with self.locked(asset_id):
            archived = self.registry.deactivate(asset_id, requester)
            if self.storage:
                self.storage.record_deactivation(archived)
            self.registry.update(archived)

        logger.info("Asset %d archived by %s", asset_id, requester)
        return archived

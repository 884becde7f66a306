import os
import logging
from typing import Callable, FrozenSet, List, Optional, Tuple, Union

from custody.chain.engine import TransferEngine
from custody.chain.ledger import CustodyLedger
from custody.chain.owners import OwnerIndex
from custody.chain.registry import AssetRegistry
from custody.core.errors import ConfigurationError
from custody.core.events import (
    AssetCreated,
    AssetDeactivated,
    AssetTransferred,
    AssetVerified,
    EventBus,
    Subscriber,
)
from custody.core.types import Asset, Transfer, utc_now
from custody.crypto.hashing import ENTRY_MODE, check_mode
from custody.storage import StorageBackend, create_storage
from custody.verify.verifier import ChainVerifier, VerificationResult

logger = logging.getLogger(__name__)

MODE_META_KEY = "fingerprint_mode"


class CustodyService:
    """
    The public surface of the custody ledger.

    Every write takes the caller's identity explicitly; there is no ambient
    "current user". Notifications go out through `events` after each
    successful operation and never influence its outcome.

    storage:  a StorageBackend, a storage URI ("sqlite://path", "memory:"),
              a plain file path (treated as SQLite), or None for in-memory only.
    mode:     fingerprint mode, "entry" or "chained". Defaults to
              $CUSTODY_FINGERPRINT_MODE, then "entry".
    archived_reads:  keep archived assets readable (get/history/verify/owner).
    """

    def __init__(
        self,
        storage: Optional[Union[StorageBackend, str]] = None,
        mode: Optional[str] = None,
        archived_reads: bool = False,
        clock: Callable[[], str] = utc_now,
    ):
        if isinstance(storage, str):
            stripped = storage.strip()
            if not stripped or stripped.startswith(("sqlite://", "jsonl:", "memory:")):
                storage = create_storage(stripped)
            else:
                # Plain file path → SQLite
                storage = create_storage(f"sqlite://{stripped}")

        self.storage: Optional[StorageBackend] = storage
        self.mode = check_mode(mode or os.environ.get("CUSTODY_FINGERPRINT_MODE") or ENTRY_MODE)
        self.events = EventBus()

        self.registry = AssetRegistry(archived_reads=archived_reads)
        self.ledger = CustodyLedger(liveness=self.registry.get)
        self.owners = OwnerIndex()
        self.engine = TransferEngine(
            self.registry, self.ledger, self.owners,
            storage=self.storage, mode=self.mode, clock=clock,
        )
        self.verifier = ChainVerifier(self.mode)

        if self.storage:
            try:
                self._bind_mode()
                self._load()
            except Exception:
                self.storage.close()
                raise

    def _bind_mode(self) -> None:
        stored = self.storage.get_meta(MODE_META_KEY)
        if stored is None:
            self.storage.set_meta(MODE_META_KEY, self.mode)
        elif stored != self.mode:
            raise ConfigurationError(
                f"Storage was written in '{stored}' fingerprint mode, service configured for '{self.mode}'"
            )

    def _load(self) -> None:
        assets = self.storage.load_assets()
        self.registry.load(assets)
        for asset in assets:
            self.ledger.load(asset.id, self.storage.load_transfers(asset.id))
        self.owners.load(self.storage.load_owner_index())
        logger.info("Loaded %d assets from storage", len(assets))

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        return self.events.subscribe(callback)

    # ── writes ─────────────────────────────────────────────────

    def create_asset(
        self,
        caller: str,
        name: str,
        description: str = "",
        metadata_hash: Optional[str] = None,
    ) -> int:
        """Mint a new asset owned by `caller`. Not idempotent: each call mints a fresh id."""
        asset, _ = self.engine.create(name, description, metadata_hash, caller)
        self.events.publish(AssetCreated(asset.id, asset.name, asset.creator))
        return asset.id

    def transfer_asset(self, caller: str, asset_id: int, to: Optional[str], notes: str = "") -> Transfer:
        entry = self.engine.transfer(asset_id, to, notes, requester=caller)
        self.events.publish(AssetTransferred(asset_id, entry.from_owner, entry.to_owner, entry.fingerprint))
        return entry

    def deactivate_asset(self, caller: str, asset_id: int) -> None:
        self.engine.deactivate(asset_id, requester=caller)
        self.events.publish(AssetDeactivated(asset_id, caller))

    # ── reads ──────────────────────────────────────────────────

    def get_asset(self, asset_id: int) -> Asset:
        with self.engine.locked(asset_id):
            return self.registry.get(asset_id)

    def get_owner(self, asset_id: int) -> str:
        return self.get_asset(asset_id).current_owner

    def get_history(self, asset_id: int) -> Tuple[Transfer, ...]:
        with self.engine.locked(asset_id):
            return self.ledger.history(asset_id)

    def get_owned_assets(self, owner: str) -> FrozenSet[int]:
        """
        Ids `owner` currently holds. Takes the owner index lock rather than an
        asset lock; the engine applies creates and transfers under that same
        lock, so any asset already visible in the registry is in its owner's set
        by the time this returns.
        """
        return self.owners.items(owner)

    def list_assets(self) -> List[Asset]:
        """Every asset ever created, archived ones included, in id order."""
        return self.registry.all()

    def verify_asset(self, asset_id: int, verifier: Optional[str] = None) -> VerificationResult:
        """
        Recompute every fingerprint in the asset's ledger.
        A broken chain is reported as ``is_valid=False``, not raised.
        """
        with self.engine.locked(asset_id):
            asset = self.registry.get(asset_id)
            chain = self.ledger.entries(asset_id)
            result = self.verifier.verify_ledger(chain, asset.transfer_count, asset.creator)

        if result.is_valid:
            self.events.publish(AssetVerified(asset_id, verifier))
        else:
            logger.warning("Asset %d failed verification: %s", asset_id, result.message)
        return result

    # ── lifecycle ──────────────────────────────────────────────

    def close(self) -> None:
        if self.storage:
            self.storage.close()
            logger.debug("Storage closed")
            self.storage = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

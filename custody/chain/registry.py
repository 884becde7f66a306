import logging
import threading
from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from custody.core.errors import Inactive, InvalidInput, NotFound, Unauthorized
from custody.core.types import Asset, is_null_identity

logger = logging.getLogger(__name__)


class AssetRegistry:
    """
    Canonical store of asset records, keyed by a sequential id that is never reused.

    With `archived_reads=False` (default) every read of an archived asset fails
    with Inactive. With `archived_reads=True` only custody-mutating operations
    are gated and archived assets stay readable.
    """

    def __init__(self, archived_reads: bool = False):
        self.archived_reads = archived_reads
        self._assets: Dict[int, Asset] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    # ── creation ───────────────────────────────────────────────

    def create(
        self,
        name: str,
        description: str,
        metadata_hash: Optional[str],
        creator: str,
        created_at: str,
    ) -> Asset:
        """
        Validate and mint a new asset record with the next id.
        The record is not stored until `add`; the engine stores it together with
        its creation entry so no reader sees one without the other.
        """
        if name is None or not name.strip():
            raise InvalidInput("Asset name must not be empty")
        if is_null_identity(creator):
            raise InvalidInput("Creator identity is required")

        with self._lock:
            asset_id = self._next_id
            self._next_id += 1

        return Asset(
            id=asset_id,
            name=name,
            description=description or "",
            current_owner=creator,
            creator=creator,
            created_at=created_at,
            metadata_hash=metadata_hash,
        )

    def add(self, asset: Asset) -> None:
        with self._lock:
            self._assets[asset.id] = asset
            self._next_id = max(self._next_id, asset.id + 1)

    def update(self, asset: Asset) -> None:
        with self._lock:
            if asset.id not in self._assets:
                raise NotFound(asset.id)
            self._assets[asset.id] = asset

    # ── reads ──────────────────────────────────────────────────

    def resolve(self, asset_id: int) -> Asset:
        """Look up an asset regardless of liveness."""
        with self._lock:
            asset = self._assets.get(asset_id)
        if asset is None:
            raise NotFound(asset_id)
        return asset

    def require_active(self, asset_id: int) -> Asset:
        """Liveness check for custody-mutating operations (always enforced)."""
        asset = self.resolve(asset_id)
        if not asset.active:
            raise Inactive(asset_id)
        return asset

    def get(self, asset_id: int) -> Asset:
        """Liveness check for reads, subject to the `archived_reads` policy."""
        if self.archived_reads:
            return self.resolve(asset_id)
        return self.require_active(asset_id)

    def all(self) -> List[Asset]:
        with self._lock:
            return [self._assets[k] for k in sorted(self._assets)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._assets)

    # ── archive ────────────────────────────────────────────────

    def deactivate(self, asset_id: int, requester: str) -> Asset:
        """Validate an archive request and return the archived record (not yet stored)."""
        asset = self.require_active(asset_id)
        if requester != asset.current_owner:
            raise Unauthorized(asset_id, requester)
        return replace(asset, active=False)

    def load(self, assets: Iterable[Asset]) -> None:
        """Bulk-populate from storage (startup only)."""
        for asset in assets:
            self.add(asset)
        logger.debug("Registry loaded %d assets, next id %d", len(self), self._next_id)

import logging
import threading
from contextlib import contextmanager
from typing import Dict, FrozenSet, Iterable, Iterator, Set, Tuple

from custody.core.errors import LedgerIntegrityError

logger = logging.getLogger(__name__)


class OwnerIndex:
    """
    Reverse lookup: owner identity -> set of asset ids currently held.
    Only ever changed as a side effect of asset creation and transfer.
    """

    def __init__(self):
        self._owned: Dict[str, Set[int]] = {}
        self._lock = threading.RLock()

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold off readers while the registry and index are updated together."""
        with self._lock:
            yield

    def add(self, owner: str, asset_id: int) -> None:
        with self._lock:
            held = self._owned.setdefault(owner, set())
            if asset_id in held:
                raise LedgerIntegrityError(f"Asset {asset_id} already indexed under '{owner}'")
            held.add(asset_id)

    def remove(self, owner: str, asset_id: int) -> None:
        with self._lock:
            held = self._owned.get(owner)
            if not held or asset_id not in held:
                raise LedgerIntegrityError(f"Asset {asset_id} is not indexed under '{owner}'")
            held.discard(asset_id)
            if not held:
                del self._owned[owner]

    def move(self, asset_id: int, from_owner: str, to_owner: str) -> None:
        """Re-home an asset in one step so readers never see it in zero or two sets."""
        with self._lock:
            held = self._owned.get(from_owner)
            if not held or asset_id not in held:
                raise LedgerIntegrityError(f"Asset {asset_id} is not indexed under '{from_owner}'")
            self.add(to_owner, asset_id)
            self.remove(from_owner, asset_id)

    def items(self, owner: str) -> FrozenSet[int]:
        with self._lock:
            return frozenset(self._owned.get(owner, ()))

    def owners(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(self._owned)

    def load(self, entries: Iterable[Tuple[str, int]]) -> None:
        """Bulk-populate from storage (startup only)."""
        with self._lock:
            for owner, asset_id in entries:
                self.add(owner, asset_id)
        logger.debug("Owner index loaded for %d owners", len(self._owned))

"""
Storage backends for persistent custody ledgers.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple
from pathlib import Path
from custody.core.types import Asset, Transfer


class StorageBackend(ABC):
    """
    Abstract base for all persistent storage implementations.
    Each record_* call must apply all of its rows in one transaction.
    """

    @abstractmethod
    def record_creation(self, asset: Asset, genesis: Transfer) -> None:
        pass

    @abstractmethod
    def record_transfer(self, asset: Asset, transfer: Transfer, previous_owner: str) -> None:
        pass

    @abstractmethod
    def record_deactivation(self, asset: Asset) -> None:
        pass

    @abstractmethod
    def load_assets(self) -> List[Asset]:
        pass

    @abstractmethod
    def load_transfers(self, asset_id: int) -> List[Transfer]:
        pass

    @abstractmethod
    def load_owner_index(self) -> List[Tuple[str, int]]:
        pass

    @abstractmethod
    def get_meta(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set_meta(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


def create_storage(uri: str) -> Optional[StorageBackend]:
    """
    sqlite://<path>     SQLite file (relative paths resolve against cwd)
    sqlite://:memory:   throwaway SQLite database
    memory: / ""        no persistence at all (returns None)
    """
    stripped = (uri or "").strip()
    if not stripped or stripped == "memory:":
        return None

    if stripped.startswith("sqlite://"):
        from .sqlite import SQLiteStorage
        raw_path = stripped[len("sqlite://"):]
        if raw_path == ":memory:":
            return SQLiteStorage(":memory:")
        if not raw_path:
            raise ValueError(f"Missing database path in storage URI: {uri}")
        return SQLiteStorage(Path(raw_path).resolve())

    elif stripped.startswith("jsonl:"):
        raise NotImplementedError("JSONL backend is export-only; use sqlite:// for live storage")
    else:
        raise ValueError(f"Unsupported storage URI: {uri}")


from .sqlite import SQLiteStorage

__all__ = ["StorageBackend", "create_storage", "SQLiteStorage"]

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional

# Marker used in place of the sender when fingerprinting a creation entry
CREATION_SENDER = "none"


def utc_now() -> str:
    """ISO 8601 UTC with millis, e.g. 2026-01-31T14:00:00.000Z"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def is_null_identity(identity: Optional[str]) -> bool:
    return identity is None or not identity.strip()


@dataclass(frozen=True)
class Asset:
    """A tracked unit of custody. Immutable snapshot; the registry swaps in updated copies."""
    id: int
    name: str
    description: str
    current_owner: str
    creator: str
    created_at: str
    metadata_hash: Optional[str] = None      # opaque external content reference
    active: bool = True                      # False once archived
    transfer_count: int = 0                  # excludes the creation entry


@dataclass(frozen=True)
class Transfer:
    """Single sealed entry in an asset's custody ledger."""
    asset_id: int
    sequence: int                   # position in the asset's ledger, creation is 0
    from_owner: Optional[str]       # None for the creation entry
    to_owner: str
    timestamp: str
    notes: str = ""
    fingerprint: str = ""           # hex(sha256), empty until sealed

    @property
    def is_creation(self) -> bool:
        return self.from_owner is None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Transfer":
        return cls(
            asset_id=int(d["asset_id"]),
            sequence=int(d["sequence"]),
            from_owner=d.get("from_owner"),
            to_owner=d["to_owner"],
            timestamp=d["timestamp"],
            notes=d.get("notes", ""),
            fingerprint=d.get("fingerprint", ""),
        )

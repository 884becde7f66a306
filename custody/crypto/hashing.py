"""
Transfer fingerprints.

    creation entry:   sha256(JCS([asset_id, "none", to, timestamp]))
    transfer entry:   sha256(JCS([asset_id, from, to, timestamp, notes]))

In ``chained`` mode a transfer entry also folds in the previous entry's stored
fingerprint as a sixth element, binding each record to its predecessor.
Creation entries hash the same way in both modes.
"""
import hashlib
from dataclasses import replace
from typing import List, Optional

from custody.core.canon import canonical_json
from custody.core.errors import ConfigurationError
from custody.core.types import CREATION_SENDER, Transfer

ENTRY_MODE = "entry"
CHAINED_MODE = "chained"
FINGERPRINT_MODES = (ENTRY_MODE, CHAINED_MODE)


def check_mode(mode: str) -> str:
    if mode not in FINGERPRINT_MODES:
        raise ConfigurationError(
            f"Unknown fingerprint mode '{mode}' (expected one of: {', '.join(FINGERPRINT_MODES)})"
        )
    return mode


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def creation_fingerprint(asset_id: int, to_owner: str, timestamp: str) -> str:
    fields: List = [asset_id, CREATION_SENDER, to_owner, timestamp]
    return sha256_hex(canonical_json(fields))


def transfer_fingerprint(
    asset_id: int,
    from_owner: str,
    to_owner: str,
    timestamp: str,
    notes: str,
    prev_fingerprint: Optional[str] = None,
) -> str:
    fields: List = [asset_id, from_owner, to_owner, timestamp, notes]
    if prev_fingerprint is not None:
        fields.append(prev_fingerprint)
    return sha256_hex(canonical_json(fields))


def expected_fingerprint(
    entry: Transfer,
    position: int,
    prev_fingerprint: Optional[str] = None,
    mode: str = ENTRY_MODE,
) -> str:
    """Recompute the fingerprint an entry should carry at `position` in its ledger.

    The rule follows the position, not the entry's own fields: position 0 always
    uses the creation rule, everything after it the transfer rule.
    """
    if position == 0:
        return creation_fingerprint(entry.asset_id, entry.to_owner, entry.timestamp)
    prev = prev_fingerprint if mode == CHAINED_MODE else None
    # A creation-shaped entry found mid-ledger still hashes under the transfer
    # rule; encode its missing sender as the creation marker
    sender = entry.from_owner if entry.from_owner is not None else CREATION_SENDER
    return transfer_fingerprint(entry.asset_id, sender, entry.to_owner, entry.timestamp, entry.notes, prev)


def seal(entry: Transfer, prev_fingerprint: Optional[str] = None, mode: str = ENTRY_MODE) -> Transfer:
    """Return a copy of `entry` carrying its fingerprint for its own sequence slot."""
    return replace(entry, fingerprint=expected_fingerprint(entry, entry.sequence, prev_fingerprint, mode))

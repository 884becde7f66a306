from typing import Iterator, List, Optional, Sequence
from dataclasses import dataclass, field

from custody.core.types import Transfer
from custody.crypto.hashing import ENTRY_MODE, check_mode, expected_fingerprint


@dataclass
class VerificationFailure:
    index: int
    message: str
    category: str = "fingerprint"  # e.g. "fingerprint", "sequence", "asset", "genesis", "empty"


@dataclass
class VerificationResult:
    """
    Outcome of replaying one asset's ledger.

    Truthy when valid, and unpacks as ``(valid, transfer_count, creator)``.
    """
    is_valid: bool
    transfer_count: int = 0
    creator: Optional[str] = None
    message: str = ""
    failures: List[VerificationFailure] = field(default_factory=list)

    @property
    def first_failure(self) -> Optional[VerificationFailure]:
        return self.failures[0] if self.failures else None

    def __bool__(self):
        return self.is_valid

    def __iter__(self) -> Iterator:
        return iter((self.is_valid, self.transfer_count, self.creator))

    def __str__(self):
        if self.is_valid:
            return "Chain is valid ✓"
        lines = [f"Verification FAILED ({len(self.failures)} issues):"]
        for f in self.failures:
            lines.append(f"  • [{f.index}] {f.category}: {f.message}")
        return "\n".join(lines)


class ChainVerifier:
    """
    Replays a custody ledger and recomputes every fingerprint.

    In ``entry`` mode each record is checked against its own fields only: a
    ledger with an interior entry spliced out (and the rest re-fingerprinted)
    still passes. ``chained`` mode folds the predecessor's fingerprint into
    each digest and catches that.
    """

    def __init__(self, mode: str = ENTRY_MODE):
        self.mode = check_mode(mode)

    def first_mismatch(self, chain: Sequence[Transfer]) -> Optional[VerificationFailure]:
        """Position-by-position fingerprint comparison, stopping at the first mismatch."""
        prev: Optional[str] = None
        for i, entry in enumerate(chain):
            expected = expected_fingerprint(entry, i, prev, self.mode)
            if entry.fingerprint != expected:
                return VerificationFailure(i, "Stored fingerprint does not match entry fields")
            prev = entry.fingerprint
        return None

    def first_gap(self, chain: Sequence[Transfer], transfer_count: int) -> Optional[VerificationFailure]:
        """Positional checks for a stored ledger: creation first, contiguous sequence, length agrees with the asset."""
        if chain[0].from_owner is not None:
            return VerificationFailure(0, "First entry is not a creation record", "genesis")
        for i, entry in enumerate(chain):
            if entry.sequence != i:
                return VerificationFailure(i, f"Sequence mismatch: expected {i}, got {entry.sequence}", "sequence")
        if len(chain) - 1 != transfer_count:
            return VerificationFailure(
                len(chain), f"Asset records {transfer_count} transfers, ledger holds {len(chain) - 1}", "sequence"
            )
        return None

    def verify_ledger(self, chain: Sequence[Transfer], transfer_count: int, creator: Optional[str]) -> VerificationResult:
        """Verify a ledger on behalf of a registered asset; the counters come from the asset record."""
        if not chain:
            return VerificationResult(
                False, 0, None, "Ledger is empty",
                [VerificationFailure(-1, "Asset exists but has no creation entry", "empty")]
            )

        failure = self.first_gap(chain, transfer_count)
        if failure is not None:
            return VerificationResult(
                False, transfer_count, creator,
                f"Broken sequence at entry {failure.index}", [failure]
            )

        failure = self.first_mismatch(chain)
        if failure is not None:
            return VerificationResult(
                False, transfer_count, creator,
                f"Fingerprint mismatch at entry {failure.index}", [failure]
            )
        return VerificationResult(True, transfer_count, creator, "Valid chain")

    def verify_chain(self, chain: Sequence[Transfer]) -> VerificationResult:
        """
        Offline verification of a bare ledger (e.g. loaded from a JSONL export).
        Also checks structure, since there is no registry record to trust.
        """
        if not chain:
            return VerificationResult(
                False, 0, None, "Ledger is empty",
                [VerificationFailure(-1, "No entries to verify", "empty")]
            )

        result = VerificationResult(True, len(chain) - 1, chain[0].to_owner)

        asset_id = chain[0].asset_id
        if chain[0].from_owner is not None:
            result.failures.append(VerificationFailure(0, "First entry is not a creation record", "genesis"))
        for i, entry in enumerate(chain):
            if entry.asset_id != asset_id:
                result.failures.append(VerificationFailure(i, f"Asset mismatch: {entry.asset_id}", "asset"))
            if entry.sequence != i:
                result.failures.append(VerificationFailure(i, f"Sequence mismatch: expected {i}, got {entry.sequence}", "sequence"))
            if i > 0 and entry.from_owner != chain[i - 1].to_owner:
                result.failures.append(VerificationFailure(i, "Sender is not the previous recipient", "sequence"))

        failure = self.first_mismatch(chain)
        if failure is not None:
            result.failures.append(failure)

        result.is_valid = not result.failures
        result.message = "Valid chain" if result.is_valid else f"Failed with {len(result.failures)} issues"
        return result

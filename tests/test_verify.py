import pytest
from dataclasses import replace

from custody.chain.service import CustodyService
from custody.crypto.hashing import CHAINED_MODE, ENTRY_MODE, seal
from custody.core.types import Transfer
from custody.verify.verifier import ChainVerifier, VerificationResult


def create_test_chain(n_transfers=4, mode=ENTRY_MODE):
    service = CustodyService(
        mode=mode,
        clock=iter(f"2026-01-31T14:00:{i:02d}.000Z" for i in range(100)).__next__,
    )
    parties = ["alice", "bob", "carol"]
    asset_id = service.create_asset("alice", "Widget-1")
    for i in range(n_transfers):
        service.transfer_asset(parties[i % 3], asset_id, parties[(i + 1) % 3], notes=f"leg #{i}")
    return service, asset_id


def test_fresh_asset_verifies():
    service, asset_id = create_test_chain(0)
    result = service.verify_asset(asset_id)
    assert tuple(result) == (True, 0, "alice")
    assert result.failures == []
    assert bool(result) is True


@pytest.mark.parametrize("mode", [ENTRY_MODE, CHAINED_MODE])
def test_valid_chain(mode):
    service, asset_id = create_test_chain(5, mode)
    assert tuple(service.verify_asset(asset_id)) == (True, 5, "alice")


@pytest.mark.parametrize("index", [0, 2, 4])
def test_tampered_fingerprint(index):
    service, asset_id = create_test_chain(4)
    chain = service.ledger._entries[asset_id]
    chain[index] = replace(chain[index], fingerprint="deadbeef" * 8)

    result = service.verify_asset(asset_id)
    assert tuple(result) == (False, 4, "alice")
    assert result.first_failure.index == index
    assert len(result.failures) == 1  # short-circuits


def test_tampered_notes():
    service, asset_id = create_test_chain(3)
    chain = service.ledger._entries[asset_id]
    chain[2] = replace(chain[2], notes="HACKED NOTES")

    result = service.verify_asset(asset_id)
    assert result.is_valid is False
    assert result.first_failure.category == "fingerprint"


def test_tampered_recipient():
    service, asset_id = create_test_chain(2)
    chain = service.ledger._entries[asset_id]
    chain[1] = replace(chain[1], to_owner="mallory")
    assert not service.verify_asset(asset_id)


def test_empty_ledger_is_invalid():
    result = ChainVerifier().verify_ledger([], 0, "alice")
    assert tuple(result) == (False, 0, None)
    assert result.first_failure.category == "empty"


def test_entry_mode_does_not_bind_predecessor():
    # Known limitation of per-entry fingerprints: an interior entry can be
    # dropped and the rest renumbered without invalidating the others
    service, asset_id = create_test_chain(3, ENTRY_MODE)
    chain = list(service.ledger.entries(asset_id))
    spliced = [replace(t, sequence=i) for i, t in enumerate(chain[:2] + chain[3:])]
    assert ChainVerifier(ENTRY_MODE).verify_ledger(spliced, 2, "alice").is_valid is True


def test_chained_mode_detects_splice():
    service, asset_id = create_test_chain(3, CHAINED_MODE)
    chain = list(service.ledger.entries(asset_id))
    spliced = [replace(t, sequence=i) for i, t in enumerate(chain[:2] + chain[3:])]
    result = ChainVerifier(CHAINED_MODE).verify_ledger(spliced, 2, "alice")
    assert result.is_valid is False
    assert result.first_failure.index == 2


@pytest.mark.parametrize("mode", [ENTRY_MODE, CHAINED_MODE])
def test_ledger_gap_is_reported_not_raised(mode):
    service, asset_id = create_test_chain(3, mode)
    chain = list(service.ledger.entries(asset_id))
    gapped = chain[:1] + chain[2:]

    result = ChainVerifier(mode).verify_ledger(gapped, 3, "alice")
    assert tuple(result) == (False, 3, "alice")
    assert result.first_failure.category == "sequence"
    assert result.first_failure.index == 1
    assert len(result.failures) == 1


def test_ledger_shorter_than_transfer_count():
    service, asset_id = create_test_chain(3)
    chain = service.ledger.entries(asset_id)[:3]

    result = ChainVerifier().verify_ledger(chain, 3, "alice")
    assert result.is_valid is False
    assert result.first_failure.index == 3
    assert "3 transfers" in result.first_failure.message


def test_ledger_without_creation_record():
    forged = [seal(Transfer(1, 0, "mallory", "alice", "2026-01-31T14:00:00.000Z"))]
    result = ChainVerifier().verify_ledger(forged, 0, "alice")
    assert result.first_failure.category == "genesis"


def test_chained_ledger_fails_entry_verification():
    service, asset_id = create_test_chain(2, CHAINED_MODE)
    chain = service.ledger.entries(asset_id)
    result = ChainVerifier(ENTRY_MODE).verify_ledger(chain, 2, "alice")
    # Creation entry hashes identically in both modes; the first transfer differs
    assert result.first_failure.index == 1


def test_verify_chain_offline():
    service, asset_id = create_test_chain(3)
    result = ChainVerifier().verify_chain(service.ledger.entries(asset_id))
    assert result.is_valid
    assert (result.transfer_count, result.creator) == (3, "alice")


def test_verify_chain_reports_structural_faults():
    service, asset_id = create_test_chain(3)
    chain = list(service.ledger.entries(asset_id))
    # Drop an entry and re-seal so every fingerprint is self-consistent
    spliced = [seal(replace(t, sequence=i)) for i, t in enumerate(chain[:2] + chain[3:])]

    result = ChainVerifier().verify_chain(spliced)
    assert result.is_valid is False
    assert any(f.category == "sequence" for f in result.failures)
    assert "FAILED" in str(result)


def test_verify_chain_rejects_non_creation_genesis():
    forged = [seal(Transfer(1, 0, "mallory", "alice", "2026-01-31T14:00:00.000Z"))]
    result = ChainVerifier().verify_chain(forged)
    assert result.is_valid is False
    assert result.first_failure.category == "genesis"


def test_verify_chain_empty():
    assert not ChainVerifier().verify_chain([])


def test_result_str():
    assert str(VerificationResult(True)) == "Chain is valid ✓"

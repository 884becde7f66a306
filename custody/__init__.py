"""
Custody — tamper-evident ownership and custody history for discrete assets.
Every asset carries an append-only ledger of transfers, each sealed with a
SHA-256 fingerprint over its canonical (RFC 8785) encoding.

Built for provenance trails that third parties can re-verify on their own.
"""

from custody.chain.service import CustodyService
from custody.core.errors import (
    CustodyError,
    Inactive,
    InvalidInput,
    NotFound,
    Unauthorized,
)
from custody.core.types import Asset, Transfer
from custody.verify.verifier import ChainVerifier, VerificationResult

__version__ = "0.1.0-dev"

__all__ = [
    "Asset",
    "ChainVerifier",
    "CustodyError",
    "CustodyService",
    "Inactive",
    "InvalidInput",
    "NotFound",
    "Transfer",
    "Unauthorized",
    "VerificationResult",
]

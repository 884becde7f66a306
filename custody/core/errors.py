"""
Error taxonomy for the custody ledger.

Every failure is raised synchronously to the caller and never retried here.
A verification that finds a broken chain is NOT an error: it returns a
result with ``is_valid=False``.
"""
from typing import Optional


class CustodyError(Exception):
    """Base for all custody ledger errors."""


class NotFound(CustodyError, LookupError):
    """No asset with this id was ever created."""

    def __init__(self, asset_id: int):
        self.asset_id = asset_id
        super().__init__(f"Asset {asset_id} not found")


class Inactive(CustodyError):
    """The asset is archived and the operation requires liveness."""

    def __init__(self, asset_id: int):
        self.asset_id = asset_id
        super().__init__(f"Asset {asset_id} is archived")


class Unauthorized(CustodyError):
    """Caller is not the current owner of the asset."""

    def __init__(self, asset_id: int, caller: Optional[str]):
        self.asset_id = asset_id
        self.caller = caller
        super().__init__(f"'{caller}' is not the current owner of asset {asset_id}")


class InvalidInput(CustodyError, ValueError):
    """Empty name, null or self target identity, missing caller."""


class LedgerIntegrityError(CustodyError, RuntimeError):
    """An internal invariant was broken. Indicates a bug, not bad input."""


class ConfigurationError(CustodyError, ValueError):
    """Unknown fingerprint mode, or storage written under a different mode."""

"""Exception taxonomy for voucher redemption and the asset ledger."""

from __future__ import annotations

__all__ = [
    "VoucherError",
    "InvalidSignatureError",
    "AuthorizationFailedError",
    "UnknownAssetError",
    "VoucherExpiredError",
    "InvalidNonceError",
    "DuplicateAssetError",
    "MetadataAlreadySetError",
    "JournalIntegrityError",
    "EnvironmentQueryError",
]


class VoucherError(RuntimeError):
    """Base class for terminal failures of a single claim or create call."""


class InvalidSignatureError(VoucherError):
    """Raised when no signer can be recovered from a voucher signature."""


class AuthorizationFailedError(InvalidSignatureError):
    """Raised when the recovered signer is not the current asset owner."""

    def __init__(self, asset_id: int, signer: str, owner: str) -> None:
        super().__init__(
            f"Signer {signer} is not the owner of asset {asset_id} (owner {owner})"
        )
        self.asset_id = asset_id
        self.signer = signer
        self.owner = owner


class UnknownAssetError(VoucherError):
    """Raised when the ledger has no record of an asset."""

    def __init__(self, asset_id: int) -> None:
        super().__init__(f"Unknown asset {asset_id}")
        self.asset_id = asset_id


class VoucherExpiredError(VoucherError):
    """Raised when a voucher is redeemed after its expiry timestamp."""

    def __init__(self, expiry: int, now: int) -> None:
        super().__init__(f"Voucher expired at {expiry} (now {now})")
        self.expiry = expiry
        self.now = now


class InvalidNonceError(VoucherError):
    """Raised when a voucher nonce does not match the signer's counter."""

    def __init__(self, signer: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Invalid nonce {actual} for {signer} (expected {expected})"
        )
        self.signer = signer
        self.expected = expected
        self.actual = actual


class DuplicateAssetError(VoucherError):
    """Raised when creating an asset whose identifier already exists."""

    def __init__(self, asset_id: int) -> None:
        super().__init__(f"Asset {asset_id} already exists")
        self.asset_id = asset_id


class MetadataAlreadySetError(VoucherError):
    """Raised when metadata for an asset has already been written."""

    def __init__(self, asset_id: int) -> None:
        super().__init__(f"Metadata URI for asset {asset_id} is already set")
        self.asset_id = asset_id


class JournalIntegrityError(RuntimeError):
    """Raised when a persisted state journal fails validation."""

    def __init__(self, path: str, line: int) -> None:
        super().__init__(f"State journal {path} failed validation at line {line}")
        self.path = path
        self.line = line


class EnvironmentQueryError(RuntimeError):
    """Raised when the live environment identifier cannot be obtained."""

"""Pydantic models for vouchers and claim receipts."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from .digest import SigningDomain, typed_data

_UINT256_MAX = 2**256 - 1


def _hex_to_bytes(value: object) -> object:
    if isinstance(value, str):
        text = value.strip()
        if text.startswith(("0x", "0X")):
            text = text[2:]
        try:
            return bytes.fromhex(text)
        except ValueError as exc:
            raise ValueError("expected a hex-encoded byte string") from exc
    return value


class NFTVoucher(BaseModel):
    """Signed authorization to transfer one asset, single-use via its nonce."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    asset_id: int = Field(..., ge=0, le=_UINT256_MAX)
    nonce: int = Field(..., ge=0, le=_UINT256_MAX)
    expiry: int = Field(
        ..., ge=0, le=_UINT256_MAX, description="Unix timestamp, inclusive."
    )
    signature: bytes = Field(
        ..., description="65-byte secp256k1 signature (r || s || v)."
    )

    @field_validator("signature", mode="before")
    @classmethod
    def _parse_signature(cls, value: object) -> object:
        """Accept hex strings (with or without ``0x``) as well as raw bytes."""

        return _hex_to_bytes(value)

    @field_serializer("signature", when_used="json")
    def _render_signature(self, value: bytes) -> str:
        return "0x" + value.hex()

    def unsigned_fields(self) -> tuple[int, int, int]:
        """Return ``(asset_id, nonce, expiry)`` in digest order."""

        return self.asset_id, self.nonce, self.expiry

    def to_typed_data(self, domain: SigningDomain) -> dict[str, object]:
        """Return the EIP-712 document this voucher's signature covers."""

        return typed_data(self.asset_id, self.nonce, self.expiry, domain)

    @classmethod
    def from_typed_data(
        cls, document: Mapping[str, object], signature: bytes | str
    ) -> "NFTVoucher":
        """Build a voucher from an EIP-712 document and its signature.

        Raises:
            ValueError: If the document is not an ``NFTVoucher`` typed-data
                payload.
        """

        if document.get("primaryType") != "NFTVoucher":
            raise ValueError("typed data primaryType must be 'NFTVoucher'")
        message = document.get("message")
        if not isinstance(message, Mapping):
            raise ValueError("typed data is missing its message")
        return cls(
            asset_id=_as_int(message.get("assetId")),
            nonce=_as_int(message.get("nonce")),
            expiry=_as_int(message.get("expiry")),
            signature=signature,
        )

    def model_dump_json_ready(self) -> dict[str, object]:
        """Return a JSON-serialisable payload."""

        return self.model_dump(mode="json")


def _as_int(value: object) -> int:
    """Parse typed-data integers, which wallets may emit as strings."""

    if isinstance(value, bool):
        raise ValueError("typed data integers must not be booleans")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("0x"):
            return int(text, 16)
        return int(text)
    raise ValueError(f"expected an integer, got {value!r}")


class ClaimReceipt(BaseModel):
    """Outcome of a successful redemption."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    asset_id: int
    signer: str
    claimer: str
    nonce: int
    digest: str = Field(..., description="Hex digest the signature covered.")
    claimed_at: datetime

"""
secp256k1 voucher signing and signer recovery.

Signatures are 65 bytes, ``r || s || v``, with ``v`` in ``{27, 28}`` as
produced by Ethereum wallets. Recovery also accepts ``v`` in ``{0, 1}``.
Malleable signatures (``s`` in the upper half of the curve order) are
rejected so every voucher has exactly one valid encoding.
"""

from __future__ import annotations

import os
from typing import Final

from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import to_checksum_address

from .digest import SigningDomain, voucher_digest
from .errors import InvalidSignatureError
from .models import NFTVoucher

__all__ = ["SIGNATURE_LENGTH", "VoucherSigner", "normalize_identity", "recover_signer"]

SIGNATURE_LENGTH: Final[int] = 65
DIGEST_LENGTH: Final[int] = 32

# secp256k1 group order
_SECP256K1_N: Final[int] = (
    0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
)
_SECP256K1_HALF_N: Final[int] = _SECP256K1_N // 2


def normalize_identity(identity: str) -> str:
    """Return the EIP-55 checksum form of an address.

    Raises:
        ValueError: If ``identity`` is not a 20-byte hex address.
    """

    return to_checksum_address(identity)


def recover_signer(digest: bytes, signature: bytes) -> str:
    """Recover the checksum address that produced ``signature`` over ``digest``.

    Args:
        digest: 32-byte message hash.
        signature: 65-byte ``r || s || v`` signature.

    Returns:
        The signer's EIP-55 checksum address.

    Raises:
        InvalidSignatureError: If the signature is malformed or no public key
            can be recovered from it.
    """

    if len(digest) != DIGEST_LENGTH:
        raise ValueError(f"digest must be {DIGEST_LENGTH} bytes")
    if len(signature) != SIGNATURE_LENGTH:
        raise InvalidSignatureError(
            f"Signature must be {SIGNATURE_LENGTH} bytes, got {len(signature)}"
        )

    r = int.from_bytes(signature[0:32], "big")
    s = int.from_bytes(signature[32:64], "big")
    v = signature[64]
    if v in (27, 28):
        v -= 27
    if v not in (0, 1):
        raise InvalidSignatureError(f"Invalid recovery parameter v={signature[64]}")
    if not 0 < r < _SECP256K1_N:
        raise InvalidSignatureError("Signature r value out of range")
    if not 0 < s <= _SECP256K1_HALF_N:
        raise InvalidSignatureError("Signature s value out of range")

    try:
        public_key = keys.Signature(vrs=(v, r, s)).recover_public_key_from_msg_hash(
            digest
        )
    except (BadSignature, ValidationError, ValueError) as exc:
        raise InvalidSignatureError(f"Signer recovery failed: {exc}") from exc
    return public_key.to_checksum_address()


class VoucherSigner:
    """
    Issue vouchers with a secp256k1 key.

    Args:
    ----
        private_key: 32-byte secret. When ``None`` a random key is generated
            if ``ephemeral=True``; otherwise a :class:`ValueError` is raised.
        ephemeral: Allow generating a throwaway key for testing.

    Attributes:
    ----------
        address: EIP-55 checksum address of the key.

    """

    def __init__(
        self, private_key: bytes | None = None, ephemeral: bool = False
    ) -> None:
        if private_key is None:
            if not ephemeral:
                raise ValueError(
                    "private_key is required to issue vouchers. "
                    "Provide a stable key, or set ephemeral=True for testing."
                )
            private_key = os.urandom(32)
        if len(private_key) != 32:
            raise ValueError("private_key must be exactly 32 bytes for secp256k1")
        try:
            self._key = keys.PrivateKey(bytes(private_key))
        except ValidationError as exc:
            raise ValueError("private_key is not a valid secp256k1 scalar") from exc
        self.address = self._key.public_key.to_checksum_address()

    @classmethod
    def from_hex(cls, private_key_hex: str) -> "VoucherSigner":
        """Build a signer from a hex key, with or without ``0x``."""

        text = private_key_hex.strip()
        if text.startswith(("0x", "0X")):
            text = text[2:]
        return cls(bytes.fromhex(text))

    def sign_digest(self, digest: bytes) -> bytes:
        """Return a 65-byte ``r || s || v`` signature with ``v`` in {27, 28}."""

        if len(digest) != DIGEST_LENGTH:
            raise ValueError(f"digest must be {DIGEST_LENGTH} bytes")
        signature = self._key.sign_msg_hash(digest)
        return (
            signature.r.to_bytes(32, "big")
            + signature.s.to_bytes(32, "big")
            + bytes([signature.v + 27])
        )

    def sign_voucher(
        self, asset_id: int, nonce: int, expiry: int, domain: SigningDomain
    ) -> NFTVoucher:
        """Sign a voucher authorizing transfer of ``asset_id``."""

        digest = voucher_digest(asset_id, nonce, expiry, domain)
        return NFTVoucher(
            asset_id=asset_id,
            nonce=nonce,
            expiry=expiry,
            signature=self.sign_digest(digest),
        )

    def __repr__(self) -> str:
        return f"VoucherSigner(address={self.address})"

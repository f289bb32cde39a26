"""
EIP-712 typed-data digests for NFT vouchers.

The digest binds a voucher's fields to a signing domain:

    digest = keccak256(0x19 0x01 || domainSeparator || structHash)
    structHash = keccak256(typeHash || assetId || nonce || expiry)

The domain separator folds in the domain name, version, environment (chain)
identifier and, when configured, the verifying deployment address. Everything
here is pure; callers supply the live environment identifier through
:class:`SigningDomain`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from eth_abi import encode
from eth_utils import keccak, to_checksum_address

__all__ = [
    "DEFAULT_DOMAIN_NAME",
    "DEFAULT_DOMAIN_VERSION",
    "VOUCHER_TYPE",
    "VOUCHER_TYPE_HASH",
    "SigningDomain",
    "typed_data",
    "voucher_digest",
    "voucher_struct_hash",
]

DEFAULT_DOMAIN_NAME: Final[str] = "Webaverse-voucher"
DEFAULT_DOMAIN_VERSION: Final[str] = "1"

VOUCHER_TYPE: Final[str] = "NFTVoucher(uint256 assetId,uint256 nonce,uint256 expiry)"
VOUCHER_TYPE_HASH: Final[bytes] = keccak(text=VOUCHER_TYPE)

_VOUCHER_FIELDS: Final[tuple[dict[str, str], ...]] = (
    {"name": "assetId", "type": "uint256"},
    {"name": "nonce", "type": "uint256"},
    {"name": "expiry", "type": "uint256"},
)

_UINT256_MAX: Final[int] = 2**256 - 1


def _require_uint256(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0 or value > _UINT256_MAX:
        raise ValueError(f"{name} must fit in an unsigned 256-bit integer")
    return value


@dataclass(frozen=True, slots=True)
class SigningDomain:
    """EIP-712 domain a voucher is signed for.

    Attributes:
        chain_id: Environment identifier, as reported by the live environment.
        name: Signing domain name.
        version: Signing domain version.
        verifying_contract: Optional deployment address bound into the domain.
    """

    chain_id: int
    name: str = DEFAULT_DOMAIN_NAME
    version: str = DEFAULT_DOMAIN_VERSION
    verifying_contract: str | None = None

    def __post_init__(self) -> None:
        _require_uint256("chain_id", self.chain_id)
        if self.verifying_contract is not None:
            object.__setattr__(
                self, "verifying_contract", to_checksum_address(self.verifying_contract)
            )

    def type_string(self) -> str:
        """Return the ``EIP712Domain`` type string for the populated members."""

        members = "string name,string version,uint256 chainId"
        if self.verifying_contract is not None:
            members += ",address verifyingContract"
        return f"EIP712Domain({members})"

    def separator(self) -> bytes:
        """Return the 32-byte domain separator."""

        types = ["bytes32", "bytes32", "bytes32", "uint256"]
        values: list[object] = [
            keccak(text=self.type_string()),
            keccak(text=self.name),
            keccak(text=self.version),
            self.chain_id,
        ]
        if self.verifying_contract is not None:
            types.append("address")
            values.append(self.verifying_contract)
        return keccak(encode(types, values))

    def to_typed_data(self) -> tuple[list[dict[str, str]], dict[str, object]]:
        """Return the ``EIP712Domain`` type members and the domain values."""

        fields = [
            {"name": "name", "type": "string"},
            {"name": "version", "type": "string"},
            {"name": "chainId", "type": "uint256"},
        ]
        values: dict[str, object] = {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
        }
        if self.verifying_contract is not None:
            fields.append({"name": "verifyingContract", "type": "address"})
            values["verifyingContract"] = self.verifying_contract
        return fields, values


def voucher_struct_hash(asset_id: int, nonce: int, expiry: int) -> bytes:
    """Hash the voucher fields under :data:`VOUCHER_TYPE_HASH`."""

    encoded = encode(
        ["bytes32", "uint256", "uint256", "uint256"],
        [
            VOUCHER_TYPE_HASH,
            _require_uint256("asset_id", asset_id),
            _require_uint256("nonce", nonce),
            _require_uint256("expiry", expiry),
        ],
    )
    return keccak(encoded)


def voucher_digest(
    asset_id: int, nonce: int, expiry: int, domain: SigningDomain
) -> bytes:
    """Return the 32-byte digest a voucher signature must cover.

    Args:
        asset_id: Identifier of the asset authorized for transfer.
        nonce: Signer nonce the voucher consumes.
        expiry: Unix timestamp after which the voucher is void.
        domain: Signing domain built from the live environment identifier.

    Returns:
        The EIP-712 digest.

    Raises:
        ValueError: If any field is not an unsigned 256-bit integer.
    """

    struct_hash = voucher_struct_hash(asset_id, nonce, expiry)
    return keccak(b"\x19\x01" + domain.separator() + struct_hash)


def typed_data(
    asset_id: int, nonce: int, expiry: int, domain: SigningDomain
) -> dict[str, object]:
    """Return the EIP-712 JSON document for a voucher.

    Wallets fed this document (``eth_signTypedData_v4``) produce signatures
    over exactly :func:`voucher_digest`.
    """

    domain_fields, domain_values = domain.to_typed_data()
    return {
        "types": {
            "EIP712Domain": domain_fields,
            "NFTVoucher": [dict(field) for field in _VOUCHER_FIELDS],
        },
        "primaryType": "NFTVoucher",
        "domain": domain_values,
        "message": {
            "assetId": _require_uint256("asset_id", asset_id),
            "nonce": _require_uint256("nonce", nonce),
            "expiry": _require_uint256("expiry", expiry),
        },
    }

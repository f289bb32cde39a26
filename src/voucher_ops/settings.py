"""Environment-backed settings primitives for :mod:`voucher_ops`."""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["VoucherOpsSettings", "get_settings"]


class VoucherOpsSettings(BaseSettings):
    """Expose environment-derived configuration knobs for voucher redemption.

    All environment lookups go through this class. Every attribute maps to a
    documented environment variable and falls back to ``None`` (or an inline
    default) when the variable is absent.

    Attributes:
        domain_name: EIP-712 signing domain name.
        domain_version: EIP-712 signing domain version.
        chain_id: Configured environment identifier. Used directly when no RPC
            endpoint is configured, otherwise only to flag divergence from the
            live answer.
        rpc_url: JSON-RPC endpoint queried for the authoritative chain id.
        rpc_timeout: Timeout in seconds for the chain id query.
        verifying_contract: Optional deployment address folded into the
            signing domain.
        journal_path: Location of the persisted state journal.
        signer_key: Hex secp256k1 private key used by ``voucher-ops sign``.
        journal_key: Hex Ed25519 seed used to sign journal entries.
    """

    domain_name: str = Field(
        default="Webaverse-voucher", alias="VOUCHER_OPS_DOMAIN_NAME"
    )
    domain_version: str = Field(default="1", alias="VOUCHER_OPS_DOMAIN_VERSION")
    chain_id: int | None = Field(default=None, alias="VOUCHER_OPS_CHAIN_ID")
    rpc_url: str | None = Field(default=None, alias="VOUCHER_OPS_RPC_URL")
    rpc_timeout: float = Field(default=5.0, alias="VOUCHER_OPS_RPC_TIMEOUT")
    verifying_contract: str | None = Field(
        default=None, alias="VOUCHER_OPS_VERIFYING_CONTRACT"
    )
    journal_path: str | None = Field(default=None, alias="VOUCHER_OPS_JOURNAL_PATH")
    signer_key: str | None = Field(default=None, alias="VOUCHER_OPS_SIGNER_KEY")
    journal_key: str | None = Field(default=None, alias="VOUCHER_OPS_JOURNAL_KEY")

    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    @field_validator("chain_id", mode="before")
    @classmethod
    def _parse_optional_int(cls, value: object) -> int | None:
        """Parse the chain id while tolerating malformed input.

        Both decimal and ``0x``-prefixed hexadecimal strings are accepted.

        Args:
            value: Raw environment value.

        Returns:
            Parsed integer when conversion succeeds, otherwise ``None``.
        """

        if value is None:
            return None
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, str):
            text = value.strip()
            try:
                if text.lower().startswith("0x"):
                    return int(text, 16)
                return int(text)
            except ValueError:
                return None
        return None

    @field_validator("rpc_timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, value: object) -> float:
        """Parse the RPC timeout, defaulting to five seconds on bad input."""

        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                return 5.0
        return 5.0

    @field_validator(
        "rpc_url", "verifying_contract", "journal_path", "signer_key", "journal_key",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: object) -> str | None:
        """Treat empty strings as unset."""

        if value is None:
            return None
        text = str(value).strip()
        return text or None


def get_settings() -> VoucherOpsSettings:
    """Return a :class:`VoucherOpsSettings` instance.

    Returns:
        Settings parsed from environment variables.
    """

    return VoucherOpsSettings()

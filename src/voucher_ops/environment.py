"""Environment identity providers and live signing-domain resolution."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

import httpx

from .digest import DEFAULT_DOMAIN_NAME, DEFAULT_DOMAIN_VERSION, SigningDomain
from .errors import EnvironmentQueryError
from .settings import VoucherOpsSettings, get_settings

LOGGER = logging.getLogger(__name__)

__all__ = [
    "DomainResolver",
    "EnvironmentIdentityProvider",
    "RpcEnvironment",
    "StaticEnvironment",
    "build_domain_resolver",
]


@runtime_checkable
class EnvironmentIdentityProvider(Protocol):
    """Source of the identifier of the environment vouchers are redeemed in."""

    def current_environment_id(self) -> int:
        """Return the authoritative environment identifier."""


class StaticEnvironment:
    """Provider answering with a fixed identifier."""

    def __init__(self, chain_id: int) -> None:
        if chain_id < 0:
            raise ValueError("chain_id must be non-negative")
        self._chain_id = chain_id

    def current_environment_id(self) -> int:
        return self._chain_id

    def __repr__(self) -> str:
        return f"StaticEnvironment(chain_id={self._chain_id})"


class RpcEnvironment:
    """Query ``eth_chainId`` from a JSON-RPC endpoint on every call."""

    def __init__(self, rpc_url: str, *, timeout_seconds: float = 5.0) -> None:
        self._url = rpc_url
        self._timeout = timeout_seconds

    def current_environment_id(self) -> int:
        """Return the chain id reported by the node.

        Raises:
            EnvironmentQueryError: On transport failures, HTTP errors, JSON-RPC
                errors or an unparseable result.
        """

        request = {"jsonrpc": "2.0", "id": 1, "method": "eth_chainId", "params": []}
        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.post(self._url, json=request)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as exc:
            LOGGER.warning(
                "Chain id query HTTP error",
                extra={"url": self._url, "status_code": exc.response.status_code},
            )
            raise EnvironmentQueryError(
                f"eth_chainId failed with HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            LOGGER.warning(
                "Chain id query transport error",
                extra={"url": self._url},
                exc_info=exc,
            )
            raise EnvironmentQueryError(f"eth_chainId transport error: {exc}") from exc
        except ValueError as exc:
            raise EnvironmentQueryError("eth_chainId returned invalid JSON") from exc

        if not isinstance(payload, dict):
            raise EnvironmentQueryError("eth_chainId response is not an object")
        if payload.get("error") is not None:
            raise EnvironmentQueryError(f"eth_chainId error: {payload['error']}")
        return _parse_quantity(payload.get("result"))

    def __repr__(self) -> str:
        return f"RpcEnvironment(rpc_url={self._url!r})"


def _parse_quantity(value: object) -> int:
    """Parse a JSON-RPC hex quantity such as ``"0x539"``."""

    if isinstance(value, str) and value.lower().startswith("0x"):
        try:
            return int(value, 16)
        except ValueError:
            pass
    raise EnvironmentQueryError(f"eth_chainId returned malformed result {value!r}")


class DomainResolver:
    """Build signing domains from the live environment identifier.

    ``expected_chain_id`` is the cached or configured identifier. It is never
    used for hashing; a mismatch with the live answer is logged as a warning
    so operators can investigate which query path is wrong.
    """

    def __init__(
        self,
        provider: EnvironmentIdentityProvider,
        *,
        name: str = DEFAULT_DOMAIN_NAME,
        version: str = DEFAULT_DOMAIN_VERSION,
        verifying_contract: str | None = None,
        expected_chain_id: int | None = None,
    ) -> None:
        self._provider = provider
        self._name = name
        self._version = version
        self._verifying_contract = verifying_contract
        self._expected_chain_id = expected_chain_id

    @property
    def expected_chain_id(self) -> int | None:
        return self._expected_chain_id

    def authoritative_chain_id(self) -> int:
        """Query the provider for the identifier used in digests."""

        live = self._provider.current_environment_id()
        if self._expected_chain_id is not None and live != self._expected_chain_id:
            LOGGER.warning(
                "Live environment id diverges from configured value",
                extra={
                    "live_chain_id": live,
                    "configured_chain_id": self._expected_chain_id,
                    "provider": repr(self._provider),
                },
            )
        return live

    def current_domain(self) -> SigningDomain:
        """Return the signing domain for the environment as it is right now."""

        return SigningDomain(
            chain_id=self.authoritative_chain_id(),
            name=self._name,
            version=self._version,
            verifying_contract=self._verifying_contract,
        )


def build_domain_resolver(settings: VoucherOpsSettings | None = None) -> DomainResolver:
    """Create a :class:`DomainResolver` from environment settings.

    An RPC endpoint, when configured, is the authoritative source and the
    configured chain id only feeds divergence warnings. Without one, the
    configured chain id is served as-is.

    Raises:
        ValueError: If neither an RPC endpoint nor a chain id is configured.
    """

    env_settings = settings or get_settings()
    provider: EnvironmentIdentityProvider
    expected: int | None = None
    if env_settings.rpc_url:
        provider = RpcEnvironment(
            env_settings.rpc_url, timeout_seconds=env_settings.rpc_timeout
        )
        expected = env_settings.chain_id
    elif env_settings.chain_id is not None:
        provider = StaticEnvironment(env_settings.chain_id)
    else:
        raise ValueError(
            "Configure VOUCHER_OPS_RPC_URL or VOUCHER_OPS_CHAIN_ID to resolve "
            "the signing domain."
        )
    return DomainResolver(
        provider,
        name=env_settings.domain_name,
        version=env_settings.domain_version,
        verifying_contract=env_settings.verifying_contract,
        expected_chain_id=expected,
    )

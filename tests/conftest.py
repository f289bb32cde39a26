"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
import sys

import pytest
from eth_utils import to_checksum_address

# Ensure src/ is on sys.path for tests so the src layout is used during test runs
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from voucher_ops.digest import SigningDomain  # noqa: E402
from voucher_ops.engine import VoucherRedemptionEngine  # noqa: E402
from voucher_ops.environment import DomainResolver, StaticEnvironment  # noqa: E402
from voucher_ops.ledger import InMemoryAssetLedger  # noqa: E402
from voucher_ops.nonces import InMemoryNonceStore  # noqa: E402
from voucher_ops.signing import VoucherSigner  # noqa: E402

CHAIN_ID = 1337
NOW = 1_700_000_000

# Deterministic test keys; never use outside tests.
ISSUER_KEY = bytes.fromhex(
    "4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
)
OTHER_KEY = bytes.fromhex(
    "9f2c4b7a1d08e3f5a6b0c3d4e7f812349abcedf00123456789abcdef01234567"
)
CLAIMER = to_checksum_address("0x000000000000000000000000000000000000beef")


class FakeClock:
    """Settable clock returning Unix seconds."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def issuer() -> VoucherSigner:
    return VoucherSigner(ISSUER_KEY)


@pytest.fixture
def other_signer() -> VoucherSigner:
    return VoucherSigner(OTHER_KEY)


@pytest.fixture
def domain() -> SigningDomain:
    return SigningDomain(chain_id=CHAIN_ID)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger() -> InMemoryAssetLedger:
    return InMemoryAssetLedger()


@pytest.fixture
def nonces() -> InMemoryNonceStore:
    return InMemoryNonceStore()


@pytest.fixture
def engine(
    ledger: InMemoryAssetLedger, nonces: InMemoryNonceStore, clock: FakeClock
) -> VoucherRedemptionEngine:
    resolver = DomainResolver(StaticEnvironment(CHAIN_ID))
    return VoucherRedemptionEngine(ledger, nonces, resolver, clock=clock)

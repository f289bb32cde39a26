"""Voucher Ops - EIP-712 voucher verification and one-time asset redemption."""

from __future__ import annotations

from importlib import import_module
from typing import Any, TYPE_CHECKING

__all__ = [
    "VoucherRedemptionEngine",
    "NFTVoucher",
    "VoucherSigner",
    "SigningDomain",
    "DomainResolver",
    "InMemoryAssetLedger",
    "InMemoryNonceStore",
    "JournalStateStore",
    "voucher_digest",
    "recover_signer",
]

if TYPE_CHECKING:
    from .digest import SigningDomain, voucher_digest
    from .engine import VoucherRedemptionEngine
    from .environment import DomainResolver
    from .ledger import InMemoryAssetLedger
    from .models import NFTVoucher
    from .nonces import InMemoryNonceStore
    from .signing import VoucherSigner, recover_signer
    from .store import JournalStateStore


def __getattr__(name: str) -> Any:
    """Lazily import submodules to avoid eager dependency loading."""

    module_map = {
        "VoucherRedemptionEngine": "engine",
        "NFTVoucher": "models",
        "VoucherSigner": "signing",
        "SigningDomain": "digest",
        "DomainResolver": "environment",
        "InMemoryAssetLedger": "ledger",
        "InMemoryNonceStore": "nonces",
        "JournalStateStore": "store",
        "voucher_digest": "digest",
        "recover_signer": "signing",
    }

    if name not in module_map:
        raise AttributeError(name)

    module = import_module(f".{module_map[name]}", __name__)
    return getattr(module, name)

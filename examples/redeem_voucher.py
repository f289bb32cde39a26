#!/usr/bin/env python3
"""
Voucher Redemption Example

This example demonstrates:
- Minting an asset into a journal-backed ledger
- Issuing an off-band voucher for it
- Redeeming the voucher on behalf of a claimer
- Showing that the same voucher cannot be redeemed twice
- Validating the state journal
"""

import tempfile
import time
from pathlib import Path

from voucher_ops.engine import VoucherRedemptionEngine
from voucher_ops.environment import DomainResolver, StaticEnvironment
from voucher_ops.errors import InvalidNonceError
from voucher_ops.journal import JournalSigner, validate_journal
from voucher_ops.signing import VoucherSigner
from voucher_ops.store import JournalStateStore

CHAIN_ID = 1337
CLAIMER = "0x000000000000000000000000000000000000dEaD"


def demonstrate_redemption(journal_path: Path) -> None:
    """Mint, issue, redeem and replay a voucher."""
    print("Voucher Redemption Example")
    print("=" * 40)

    journal_signer = JournalSigner(ephemeral=True)
    store = JournalStateStore(journal_path, signer=journal_signer)
    resolver = DomainResolver(StaticEnvironment(CHAIN_ID))
    engine = VoucherRedemptionEngine(store, store, resolver)

    issuer = VoucherSigner(ephemeral=True)
    engine.create_asset(42, issuer.address, "ipfs://example/42")
    print(f"Minted asset 42 to {issuer.address}")

    voucher = issuer.sign_voucher(
        asset_id=42,
        nonce=engine.nonce_of(issuer.address),
        expiry=int(time.time()) + 3600,
        domain=resolver.current_domain(),
    )
    print(f"Issued voucher: {voucher.model_dump_json_ready()}")

    receipt = engine.redeem(CLAIMER, voucher)
    print(f"Claimed asset {receipt.asset_id} for {receipt.claimer}")
    print(f"Owner is now {store.owner_of(42)}")
    print(f"Issuer nonce is now {store.current(issuer.address)}")

    try:
        engine.claim(CLAIMER, voucher)
    except InvalidNonceError as exc:
        print(f"Replay rejected: {exc}")

    ok, bad_line = validate_journal(journal_path, journal_signer.signing_key)
    print(f"Journal valid: {ok} (first bad line: {bad_line})")


if __name__ == "__main__":
    with tempfile.TemporaryDirectory() as tmp:
        demonstrate_redemption(Path(tmp) / "state.ndjson")

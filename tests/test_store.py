"""Tests for the journal-backed ledger and nonce store."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import CHAIN_ID, CLAIMER, NOW, FakeClock
from voucher_ops.digest import SigningDomain
from voucher_ops.engine import ClaimCommitter, VoucherRedemptionEngine
from voucher_ops.environment import DomainResolver, StaticEnvironment
from voucher_ops.errors import (
    DuplicateAssetError,
    InvalidNonceError,
    JournalIntegrityError,
    MetadataAlreadySetError,
)
from voucher_ops.journal import JournalSigner, append_entry, read_entries
from voucher_ops.ledger import AssetLedger
from voucher_ops.nonces import NonceStore
from voucher_ops.signing import VoucherSigner
from voucher_ops.store import JournalStateStore

SEED = b"\x05" * 32


def _engine(store: JournalStateStore) -> VoucherRedemptionEngine:
    return VoucherRedemptionEngine(
        store, store, DomainResolver(StaticEnvironment(CHAIN_ID)), clock=FakeClock()
    )


def test_store_satisfies_both_protocols(tmp_path: Path):
    store = JournalStateStore(tmp_path / "state.ndjson")
    assert isinstance(store, AssetLedger)
    assert isinstance(store, NonceStore)
    assert isinstance(store, ClaimCommitter)


def test_claim_survives_restart(
    tmp_path: Path, issuer: VoucherSigner, domain: SigningDomain
):
    path = tmp_path / "state.ndjson"
    signer = JournalSigner(SEED)
    store = JournalStateStore(path, signer=signer)
    store.create(42, issuer.address, "ipfs://42")
    voucher = issuer.sign_voucher(42, 0, NOW + 60, domain)
    assert _engine(store).claim(CLAIMER, voucher) == 42

    events = [entry["event"] for entry in read_entries(path)]
    assert events == ["asset_created", "voucher_claimed"]

    reloaded = JournalStateStore(path, signer=signer)
    assert reloaded.owner_of(42) == CLAIMER
    assert reloaded.metadata_uri(42) == "ipfs://42"
    assert reloaded.current(issuer.address) == 1
    with pytest.raises(InvalidNonceError):
        _engine(reloaded).claim(CLAIMER, voucher)


def test_rejected_claim_writes_nothing(
    tmp_path: Path, issuer: VoucherSigner, domain: SigningDomain
):
    path = tmp_path / "state.ndjson"
    store = JournalStateStore(path)
    store.create(1, issuer.address, "ipfs://1")

    with pytest.raises(InvalidNonceError):
        _engine(store).claim(CLAIMER, issuer.sign_voucher(1, 3, NOW + 60, domain))
    assert len(read_entries(path)) == 1


def test_creation_errors_persist_across_restart(tmp_path: Path, issuer: VoucherSigner):
    path = tmp_path / "state.ndjson"
    store = JournalStateStore(path)
    store.create(1, issuer.address, "ipfs://1")
    store.create(2, issuer.address, "ipfs://2")
    store.burn(2, issuer.address)

    reloaded = JournalStateStore(path)
    with pytest.raises(DuplicateAssetError):
        reloaded.create(1, issuer.address, "ipfs://again")
    with pytest.raises(MetadataAlreadySetError):
        reloaded.create(2, issuer.address, "ipfs://again")
    assert len(read_entries(path)) == 3


def test_tampered_journal_is_refused(tmp_path: Path, issuer: VoucherSigner):
    path = tmp_path / "state.ndjson"
    signer = JournalSigner(SEED)
    store = JournalStateStore(path, signer=signer)
    store.create(1, issuer.address, "ipfs://1")
    store.transfer(1, issuer.address, CLAIMER)

    lines = path.read_text(encoding="utf-8").splitlines()
    entry = json.loads(lines[1])
    entry["to"] = issuer.address
    lines[1] = json.dumps(entry)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    with pytest.raises(JournalIntegrityError) as excinfo:
        JournalStateStore(path, signer=signer)
    assert excinfo.value.line == 2


def test_journal_signed_by_other_key_is_refused(tmp_path: Path, issuer: VoucherSigner):
    path = tmp_path / "state.ndjson"
    JournalStateStore(path, signer=JournalSigner(SEED)).create(
        1, issuer.address, "ipfs://1"
    )
    with pytest.raises(JournalIntegrityError):
        JournalStateStore(path, signer=JournalSigner(b"\x06" * 32))


def test_unknown_event_is_refused(tmp_path: Path):
    path = tmp_path / "state.ndjson"
    append_entry(path, {"event": "asset_minted_twice"})
    with pytest.raises(JournalIntegrityError) as excinfo:
        JournalStateStore(path)
    assert excinfo.value.line == 1


def test_undecodable_journal_is_refused(tmp_path: Path):
    path = tmp_path / "state.ndjson"
    path.write_bytes(b'{"event":"asset_created"}\n\xff\xfe\n')
    with pytest.raises(JournalIntegrityError) as excinfo:
        JournalStateStore(path)
    assert excinfo.value.line == 2


def test_second_store_rejects_voucher_redeemed_elsewhere(
    tmp_path: Path, issuer: VoucherSigner, domain: SigningDomain
):
    path = tmp_path / "state.ndjson"
    first = JournalStateStore(path)
    first.create(42, issuer.address, "ipfs://42")
    second = JournalStateStore(path)
    voucher = issuer.sign_voucher(42, 0, NOW + 60, domain)

    assert _engine(first).claim(CLAIMER, voucher) == 42
    with pytest.raises(InvalidNonceError):
        _engine(second).claim(CLAIMER, voucher)

    assert second.owner_of(42) == CLAIMER
    assert second.current(issuer.address) == 1
    events = [entry["event"] for entry in read_entries(path)]
    assert events == ["asset_created", "voucher_claimed"]


def test_refresh_applies_entries_from_other_writers(
    tmp_path: Path, issuer: VoucherSigner
):
    path = tmp_path / "state.ndjson"
    first = JournalStateStore(path)
    second = JournalStateStore(path)
    first.create(1, issuer.address, "ipfs://1")
    first.compare_and_increment(issuer.address, 0)

    assert 1 not in second
    second.refresh()
    assert second.owner_of(1) == issuer.address
    assert second.current(issuer.address) == 1

    with pytest.raises(InvalidNonceError):
        first.compare_and_increment(issuer.address, 0)
    with pytest.raises(DuplicateAssetError):
        second.create(1, issuer.address, "ipfs://again")
    assert len(read_entries(path)) == 2


class _FlakySigner(JournalSigner):
    """Journal signer that fails while ``fail`` is set, like a full disk."""

    fail = False

    def sign(self, payload: dict[str, object]) -> dict[str, object]:
        if self.fail:
            raise OSError("disk full")
        return super().sign(payload)


def test_failed_claim_write_leaves_no_state(
    tmp_path: Path, issuer: VoucherSigner, domain: SigningDomain
):
    path = tmp_path / "state.ndjson"
    signer = _FlakySigner(SEED)
    store = JournalStateStore(path, signer=signer)
    store.create(42, issuer.address, "ipfs://42")
    voucher = issuer.sign_voucher(42, 0, NOW + 60, domain)

    signer.fail = True
    with pytest.raises(OSError):
        _engine(store).claim(CLAIMER, voucher)
    assert store.owner_of(42) == issuer.address
    assert store.current(issuer.address) == 0
    assert len(read_entries(path)) == 1

    signer.fail = False
    assert _engine(store).claim(CLAIMER, voucher) == 42
    assert JournalStateStore(path, signer=signer).owner_of(42) == CLAIMER

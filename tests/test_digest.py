"""Tests for EIP-712 voucher digests."""

from __future__ import annotations

import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import keccak

from conftest import CHAIN_ID, ISSUER_KEY
from voucher_ops.digest import (
    VOUCHER_TYPE,
    VOUCHER_TYPE_HASH,
    SigningDomain,
    typed_data,
    voucher_digest,
    voucher_struct_hash,
)
from voucher_ops.signing import recover_signer

CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


def test_type_hash_matches_type_string():
    assert VOUCHER_TYPE == "NFTVoucher(uint256 assetId,uint256 nonce,uint256 expiry)"
    assert VOUCHER_TYPE_HASH == keccak(text=VOUCHER_TYPE)


def test_digest_is_deterministic(domain: SigningDomain):
    first = voucher_digest(42, 0, 1_800_000_000, domain)
    second = voucher_digest(42, 0, 1_800_000_000, SigningDomain(chain_id=CHAIN_ID))
    assert len(first) == 32
    assert first == second


@pytest.mark.parametrize(
    "fields",
    [(43, 0, 1_800_000_000), (42, 1, 1_800_000_000), (42, 0, 1_800_000_001)],
)
def test_digest_binds_every_field(domain: SigningDomain, fields):
    base = voucher_digest(42, 0, 1_800_000_000, domain)
    assert voucher_digest(*fields, domain) != base


def test_digest_is_domain_separated():
    fields = (42, 0, 1_800_000_000)
    base = voucher_digest(*fields, SigningDomain(chain_id=1))
    assert voucher_digest(*fields, SigningDomain(chain_id=5)) != base
    assert voucher_digest(*fields, SigningDomain(chain_id=1, name="Other")) != base
    assert voucher_digest(*fields, SigningDomain(chain_id=1, version="2")) != base
    assert (
        voucher_digest(*fields, SigningDomain(chain_id=1, verifying_contract=CONTRACT))
        != base
    )


def test_struct_hash_is_not_the_digest(domain: SigningDomain):
    assert voucher_struct_hash(42, 0, 1) != voucher_digest(42, 0, 1, domain)


@pytest.mark.parametrize("bad", [-1, 2**256, True, "42"])
def test_digest_rejects_non_uint256(domain: SigningDomain, bad):
    with pytest.raises(ValueError):
        voucher_digest(bad, 0, 0, domain)


def test_domain_normalizes_contract_address():
    domain = SigningDomain(chain_id=1, verifying_contract=CONTRACT.lower())
    assert domain.verifying_contract == CONTRACT
    assert domain.type_string().endswith(",address verifyingContract)")


@pytest.mark.parametrize("contract", [None, CONTRACT])
def test_typed_data_signed_by_wallet_recovers_here(contract):
    """Signatures made by a wallet library over typed data verify here."""

    domain = SigningDomain(chain_id=CHAIN_ID, verifying_contract=contract)
    document = typed_data(42, 3, 1_800_000_000, domain)
    signed = Account.sign_message(
        encode_typed_data(full_message=document), private_key=ISSUER_KEY
    )

    digest = voucher_digest(42, 3, 1_800_000_000, domain)
    assert recover_signer(digest, bytes(signed.signature)) == (
        Account.from_key(ISSUER_KEY).address
    )


def test_typed_data_shape(domain: SigningDomain):
    document = typed_data(7, 1, 99, domain)
    assert document["primaryType"] == "NFTVoucher"
    assert document["domain"] == {
        "name": "Webaverse-voucher",
        "version": "1",
        "chainId": CHAIN_ID,
    }
    assert document["message"] == {"assetId": 7, "nonce": 1, "expiry": 99}

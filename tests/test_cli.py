"""Tests for CLI functionality."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import ISSUER_KEY
from voucher_ops.cli import main
from voucher_ops.digest import SigningDomain, voucher_digest
from voucher_ops.journal import JournalSigner, append_entry
from voucher_ops.signing import VoucherSigner


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "VOUCHER_OPS_RPC_URL",
        "VOUCHER_OPS_CHAIN_ID",
        "VOUCHER_OPS_SIGNER_KEY",
        "VOUCHER_OPS_JOURNAL_PATH",
        "VOUCHER_OPS_JOURNAL_KEY",
    ):
        monkeypatch.delenv(name, raising=False)


def _last_json(output: str) -> dict[str, object]:
    return json.loads(output.strip().splitlines()[-1])


def test_cli_help(capsys):
    assert main(["--help"]) == 0
    captured = capsys.readouterr()
    assert "usage:" in captured.out.lower()
    assert "voucher" in captured.out.lower()


def test_cli_requires_command():
    assert main([]) == 1


def test_cli_digest(capsys):
    args = ["digest", "--asset-id", "42", "--nonce", "0", "--expiry", "99"]
    assert main(args + ["--chain-id", "5"]) == 0
    payload = _last_json(capsys.readouterr().out)
    expected = voucher_digest(42, 0, 99, SigningDomain(chain_id=5))
    assert payload == {"digest": "0x" + expected.hex(), "chain_id": 5}


def test_cli_digest_uses_configured_chain(capsys, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("VOUCHER_OPS_CHAIN_ID", "1337")
    assert main(["digest", "--asset-id", "1", "--nonce", "0", "--expiry", "9"]) == 0
    assert _last_json(capsys.readouterr().out)["chain_id"] == 1337


def test_cli_digest_without_environment(capsys):
    assert main(["digest", "--asset-id", "1", "--nonce", "0", "--expiry", "9"]) == 1
    assert "VOUCHER_OPS_CHAIN_ID" in capsys.readouterr().err


def test_cli_sign_then_recover(
    capsys, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
):
    monkeypatch.setenv("VOUCHER_OPS_SIGNER_KEY", ISSUER_KEY.hex())
    args = ["sign", "--asset-id", "42", "--nonce", "0", "--expiry", "99"]
    assert main(args + ["--chain-id", "5"]) == 0
    signed = _last_json(capsys.readouterr().out)
    assert signed["signer"] == VoucherSigner(ISSUER_KEY).address
    assert signed["typed_data"]["primaryType"] == "NFTVoucher"

    voucher_file = tmp_path / "voucher.json"
    voucher_file.write_text(json.dumps(signed), encoding="utf-8")
    assert main(["recover", "--input", str(voucher_file), "--chain-id", "5"]) == 0
    assert _last_json(capsys.readouterr().out)["signer"] == signed["signer"]

    # a different environment recovers a different identity
    assert main(["recover", "--input", str(voucher_file), "--chain-id", "6"]) == 0
    assert _last_json(capsys.readouterr().out)["signer"] != signed["signer"]


def test_cli_sign_requires_key(capsys):
    args = ["sign", "--asset-id", "1", "--nonce", "0", "--expiry", "9"]
    assert main(args + ["--chain-id", "1"]) == 1
    assert "VOUCHER_OPS_SIGNER_KEY" in capsys.readouterr().err


def test_cli_recover_rejects_bad_signature(capsys, tmp_path: Path):
    voucher_file = tmp_path / "voucher.json"
    voucher_file.write_text(
        json.dumps({"asset_id": 1, "nonce": 0, "expiry": 9, "signature": "0x00"}),
        encoding="utf-8",
    )
    assert main(["recover", "-i", str(voucher_file), "--chain-id", "1"]) == 1
    assert "65 bytes" in capsys.readouterr().err


def test_cli_validate_journal(capsys, tmp_path: Path):
    journal = tmp_path / "state.ndjson"
    signer = JournalSigner(b"\x01" * 32)
    append_entry(journal, {"event": "asset_created"}, signer)

    assert main(["validate-journal", str(journal), "-k", signer.signing_key]) == 0
    assert _last_json(capsys.readouterr().out) == {
        "valid": True,
        "first_bad_line": None,
    }

    other = JournalSigner(b"\x02" * 32).signing_key
    assert main(["validate-journal", str(journal), "-k", other]) == 1
    assert _last_json(capsys.readouterr().out) == {"valid": False, "first_bad_line": 1}


def test_cli_validate_journal_from_settings(
    capsys, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
):
    seed = b"\x03" * 32
    journal = tmp_path / "state.ndjson"
    append_entry(journal, {"event": "asset_created"}, JournalSigner(seed))
    monkeypatch.setenv("VOUCHER_OPS_JOURNAL_PATH", str(journal))
    monkeypatch.setenv("VOUCHER_OPS_JOURNAL_KEY", seed.hex())

    assert main(["validate-journal"]) == 0
    assert _last_json(capsys.readouterr().out)["valid"] is True

    monkeypatch.setenv("VOUCHER_OPS_JOURNAL_KEY", ("04" * 32))
    assert main(["validate-journal"]) == 1


def test_cli_validate_journal_requires_path(capsys):
    assert main(["validate-journal"]) == 1
    assert "VOUCHER_OPS_JOURNAL_PATH" in capsys.readouterr().err

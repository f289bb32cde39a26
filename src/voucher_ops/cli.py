"""Command-line utilities for voucher_ops."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from .digest import SigningDomain, voucher_digest
from .environment import DomainResolver, StaticEnvironment, build_domain_resolver
from .journal import JournalSigner, validate_journal
from .logging_pipeline import configure_structured_logging, shutdown_listeners
from .models import NFTVoucher
from .settings import VoucherOpsSettings, get_settings
from .signing import VoucherSigner, recover_signer


def _read_stdin() -> str | None:
    """Read JSON payload from stdin if available."""
    try:
        if sys.stdin and not sys.stdin.isatty():
            return sys.stdin.read()
    except IOError as e:
        print(f"Error reading stdin: {e}", file=sys.stderr)
    return None


def _load_json(path: str | None, stdin_payload: str | None) -> dict[str, object]:
    """Load JSON data from file or stdin."""
    if path:
        return _parse_json_dict(Path(path).read_text(encoding="utf-8"))
    if stdin_payload:
        return _parse_json_dict(stdin_payload)
    raise ValueError("No input provided. Use --input or pipe JSON via stdin.")


def _parse_json_dict(payload: str) -> dict[str, object]:
    """Parse a JSON string and ensure the result is a dictionary."""
    data = json.loads(payload)
    if not isinstance(data, dict):
        raise ValueError("Input JSON must be an object at the top level.")
    return {str(key): value for key, value in data.items()}


def _resolve_domain(
    chain_id: int | None, settings: VoucherOpsSettings
) -> SigningDomain:
    """Use ``--chain-id`` when given, otherwise the configured environment."""
    if chain_id is None:
        return build_domain_resolver(settings).current_domain()
    resolver = DomainResolver(
        StaticEnvironment(chain_id),
        name=settings.domain_name,
        version=settings.domain_version,
        verifying_contract=settings.verifying_contract,
    )
    return resolver.current_domain()


def _print(payload: dict[str, object]) -> None:
    print(json.dumps(payload, separators=(",", ":")))


def _cmd_digest(args: argparse.Namespace, settings: VoucherOpsSettings) -> int:
    domain = _resolve_domain(args.chain_id, settings)
    digest = voucher_digest(args.asset_id, args.nonce, args.expiry, domain)
    _print({"digest": "0x" + digest.hex(), "chain_id": domain.chain_id})
    return 0


def _cmd_sign(args: argparse.Namespace, settings: VoucherOpsSettings) -> int:
    if not settings.signer_key:
        raise ValueError("VOUCHER_OPS_SIGNER_KEY is not set.")
    signer = VoucherSigner.from_hex(settings.signer_key)
    domain = _resolve_domain(args.chain_id, settings)
    voucher = signer.sign_voucher(args.asset_id, args.nonce, args.expiry, domain)
    _print(
        {
            "signer": signer.address,
            "voucher": voucher.model_dump_json_ready(),
            "typed_data": voucher.to_typed_data(domain),
        }
    )
    return 0


def _cmd_recover(args: argparse.Namespace, settings: VoucherOpsSettings) -> int:
    data = _load_json(args.input, _read_stdin())
    nested = data.get("voucher")
    voucher = NFTVoucher.model_validate(nested if isinstance(nested, dict) else data)
    domain = _resolve_domain(args.chain_id, settings)
    digest = voucher_digest(voucher.asset_id, voucher.nonce, voucher.expiry, domain)
    signer = recover_signer(digest, voucher.signature)
    _print({"signer": signer, "digest": "0x" + digest.hex()})
    return 0


def _cmd_validate_journal(
    args: argparse.Namespace, settings: VoucherOpsSettings
) -> int:
    path = args.path or settings.journal_path
    if not path:
        raise ValueError("Pass a journal path or set VOUCHER_OPS_JOURNAL_PATH.")
    public_key = args.public_key
    if public_key is None and settings.journal_key:
        public_key = JournalSigner(bytes.fromhex(settings.journal_key)).signing_key
    ok, bad_line = validate_journal(Path(path), public_key)
    _print({"valid": ok, "first_bad_line": bad_line if not ok else None})
    return 0 if ok else 1


def _add_voucher_fields(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--asset-id", type=int, required=True)
    parser.add_argument("--nonce", type=int, required=True)
    parser.add_argument("--expiry", type=int, required=True, help="Unix timestamp.")
    _add_chain_id(parser)


def _add_chain_id(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--chain-id",
        type=int,
        help="Environment identifier. Defaults to the configured RPC or chain id.",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="voucher-ops", description="Sign, inspect and verify NFT vouchers."
    )
    parser.add_argument(
        "--log-json", action="store_true", help="Emit structured JSON logs to stderr."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    digest = sub.add_parser("digest", help="Print the EIP-712 digest of a voucher.")
    _add_voucher_fields(digest)
    digest.set_defaults(handler=_cmd_digest)

    sign = sub.add_parser("sign", help="Sign a voucher with VOUCHER_OPS_SIGNER_KEY.")
    _add_voucher_fields(sign)
    sign.set_defaults(handler=_cmd_sign)

    recover = sub.add_parser("recover", help="Recover the signer of a voucher.")
    recover.add_argument(
        "--input", "-i", help="Path to voucher JSON. If omitted, reads from stdin."
    )
    _add_chain_id(recover)
    recover.set_defaults(handler=_cmd_recover)

    journal = sub.add_parser("validate-journal", help="Validate a state journal.")
    journal.add_argument(
        "path",
        nargs="?",
        help="Path to the NDJSON state journal. Defaults to VOUCHER_OPS_JOURNAL_PATH.",
    )
    journal.add_argument(
        "--public-key",
        "-k",
        help="Ed25519 public key hex every entry must match. Defaults to the key "
        "derived from VOUCHER_OPS_JOURNAL_KEY.",
    )
    journal.set_defaults(handler=_cmd_validate_journal)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the voucher-ops command line."""
    parser = _build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:  # pragma: no cover - controlled via tests
        exit_code = int(exc.code) if isinstance(exc.code, int) else 1
        return 0 if exit_code == 0 else 1

    listeners = []
    if args.log_json:
        listeners.append(configure_structured_logging(logging.getLogger("voucher_ops")))
    try:
        return int(args.handler(args, get_settings()))
    except Exception as exc:
        print(str(exc), file=sys.stderr)
        return 1
    finally:
        shutdown_listeners(listeners)


if __name__ == "__main__":
    raise SystemExit(main())

"""
Append-only state journal (NDJSON) with canonicalization, optional Ed25519
signing and hash-chained integrity.

Each line is a JSON object built from a canonicalized payload plus a
``prev_hash`` field equal to the SHA-256 of the canonicalized previous payload
(signature fields excluded). When a :class:`JournalSigner` is supplied the
payload is also signed. Validation requires ``prev_hash`` continuity and, for
signed entries, a valid signature.

Appends are serialized across threads and processes with an advisory
``portalocker`` lock on a sidecar ``.lock`` file, and land on disk through a
temporary file followed by an atomic ``os.replace``.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO

import portalocker
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

logger = logging.getLogger(__name__)

__all__ = [
    "SIGNATURE_FIELDS",
    "JournalSigner",
    "append_entry",
    "canonicalize",
    "hash_canonical",
    "load_entry",
    "read_entries",
    "strip_signature",
    "validate_journal",
    "verify_entry",
]

# Fields excluded from hashing and from the signed envelope
SIGNATURE_FIELDS = ("signature", "signing_key", "signature_algorithm")


def canonicalize(obj: object) -> str:
    """
    Return deterministic JSON serialization for obj.

    Uses sort_keys and compact separators to ensure stable output for hashing
    and signing.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def hash_canonical(obj: object) -> str:
    """Return SHA-256 hex digest over the canonicalized JSON representation."""
    return hashlib.sha256(canonicalize(obj).encode("utf-8")).hexdigest()


def strip_signature(entry: dict[str, object]) -> dict[str, object]:
    """Return ``entry`` without its signature metadata."""
    return {k: v for k, v in entry.items() if k not in SIGNATURE_FIELDS}


class JournalSigner:
    """
    Ed25519 signer for journal entries.

    Args:
    ----
        private_key: 32-byte Ed25519 seed. When ``None``, a random seed is
            generated if ``ephemeral=True``; otherwise a :class:`ValueError`
            is raised.
        ephemeral: Allow generating a throwaway key for testing.

    Attributes:
    ----------
        algorithm: Always ``"ed25519"``.
        signing_key: Hex encoding of the raw public key.

    """

    def __init__(
        self, private_key: bytes | None = None, ephemeral: bool = False
    ) -> None:
        self.algorithm = "ed25519"
        if private_key is None:
            if not ephemeral:
                raise ValueError(
                    "private_key is required for journal signing. "
                    "Provide a stable key, or set ephemeral=True for testing."
                )
            private_key = os.urandom(32)
        if len(private_key) != 32:
            raise ValueError("private_key must be exactly 32 bytes for Ed25519")

        self._priv = Ed25519PrivateKey.from_private_bytes(bytes(private_key))
        pub_bytes = self._priv.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self.signing_key = pub_bytes.hex()

    def sign(self, payload: dict[str, object]) -> dict[str, object]:
        """Return a copy of ``payload`` with signature metadata attached."""
        data = canonicalize(payload).encode("utf-8")
        out = dict(payload)
        out["signature"] = self._priv.sign(data).hex()
        out["signing_key"] = self.signing_key
        out["signature_algorithm"] = self.algorithm
        return out


def verify_entry(
    entry: dict[str, object], public_key_hex: str | None = None
) -> dict[str, object] | None:
    """
    Verify a journal entry's signature.

    ``public_key_hex`` pins the expected key; when omitted the entry's own
    ``signing_key`` is used. Returns the unsigned payload on success and
    ``None`` otherwise.
    """
    sig_hex = entry.get("signature")
    key_hex = public_key_hex or entry.get("signing_key")
    if not isinstance(sig_hex, str) or not isinstance(key_hex, str):
        return None
    if key_hex.startswith(("0x", "0X")):
        key_hex = key_hex[2:]
    # 64 hex chars = 32-byte Ed25519 public key
    if len(key_hex) != 64:
        return None

    original = strip_signature(entry)
    data = canonicalize(original).encode("utf-8")
    try:
        public_key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(key_hex))
        public_key.verify(bytes.fromhex(sig_hex), data)
    except (InvalidSignature, ValueError):
        return None
    return original


@contextmanager
def _acquire_journal_lock(journal_path: Path) -> Iterator[IO[bytes]]:
    """Hold an exclusive advisory lock for the duration of a rewrite."""
    lock_path = journal_path.with_suffix(journal_path.suffix + ".lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+b") as lock_fp:
        portalocker.lock(lock_fp, portalocker.LOCK_EX)
        try:
            yield lock_fp
        finally:
            portalocker.unlock(lock_fp)


def load_entry(
    line: bytes, public_key_hex: str | None = None
) -> dict[str, object] | None:
    """
    Decode one stored line and return its unsigned payload.

    Signed lines are verified (against ``public_key_hex`` when given, else
    their embedded key); when ``public_key_hex`` is given unsigned lines are
    refused. Returns ``None`` for anything unreadable or unverifiable.
    """
    try:
        entry = json.loads(line.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(entry, dict):
        return None
    if public_key_hex is not None or "signature" in entry:
        return verify_entry(entry, public_key_hex)
    return entry


def _prev_hash_from_line(line: bytes) -> str | None:
    """Return the chain hash of a stored line, or ``None`` if unreadable."""
    original = load_entry(line)
    if original is None:
        return None
    return hash_canonical(original)


def _fsync_directory(path: Path) -> None:
    """Durably flush directory metadata when supported by the platform."""
    if os.name == "nt":  # pragma: no cover - Windows does not need dir fsync
        return
    flags = getattr(os, "O_DIRECTORY", None)
    if flags is None:  # pragma: no cover - platform without O_DIRECTORY
        return
    fd = os.open(str(path), flags)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def append_entry(
    journal_path: Path,
    payload: dict[str, object],
    signer: JournalSigner | None = None,
    *,
    before_write: Callable[[list[bytes]], None] | None = None,
) -> dict[str, object]:
    """
    Append an entry to the journal under an exclusive advisory lock.

    Behavior:
    - Acquire exclusive lock on the journal.
    - Hand the existing non-blank lines to ``before_write``; an exception
      raised there aborts the append and leaves the journal untouched.
    - Link the payload to the last entry through ``prev_hash``.
    - Sign the payload when a signer is supplied, then append.

    Returns the entry written.

    Raises:
        ValueError: If ``payload`` uses reserved signature or chain fields.
    """
    reserved = set(SIGNATURE_FIELDS) | {"prev_hash"}
    clash = reserved.intersection(payload)
    if clash:
        raise ValueError(f"Reserved journal fields in payload: {sorted(clash)}")

    journal_path.parent.mkdir(parents=True, exist_ok=True)
    payload_to_write: dict[str, object] = dict(payload)

    with _acquire_journal_lock(journal_path):
        temp_path: Path | None = None
        entry: dict[str, object]
        try:
            with tempfile.NamedTemporaryFile(
                "w+b", dir=str(journal_path.parent), delete=False
            ) as tmp:
                temp_path = Path(tmp.name)
                existing: list[bytes] = []
                if journal_path.exists():
                    with journal_path.open("rb") as src:
                        for line in src:
                            tmp.write(line)
                            if line.strip():
                                existing.append(line.strip())

                if before_write is not None:
                    before_write(existing)

                if existing:
                    prev = _prev_hash_from_line(existing[-1])
                    if prev is None:
                        raise ValueError(
                            f"Cannot chain onto unreadable last entry in {journal_path}"
                        )
                    payload_to_write["prev_hash"] = prev

                entry = signer.sign(payload_to_write) if signer else payload_to_write
                tmp.write(canonicalize(entry).encode("utf-8") + b"\n")
                tmp.flush()
                try:
                    os.fsync(tmp.fileno())
                except OSError as exc:
                    logger.warning(
                        "Failed to fsync journal temp file",
                        extra={"error": str(exc)},
                    )
        except Exception:
            if temp_path is not None and temp_path.exists():
                temp_path.unlink(missing_ok=True)
            raise

        try:
            os.replace(temp_path, journal_path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)
            raise

        try:
            _fsync_directory(journal_path.parent)
        except OSError as exc:
            logger.warning(
                "Failed to fsync journal directory",
                extra={"error": str(exc)},
            )

    return entry


def read_entries(journal_path: Path) -> list[dict[str, object]]:
    """
    Return every entry in the journal, without chain or signature checks.

    Raises:
        ValueError: If a line is not a UTF-8 JSON object.
    """
    entries: list[dict[str, object]] = []
    if not journal_path.exists():
        return entries
    with journal_path.open("rb") as f:
        for idx, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line.decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                raise ValueError(f"Unreadable journal line {idx}") from exc
            if not isinstance(entry, dict):
                raise ValueError(f"Journal line {idx} is not an object")
            entries.append(entry)
    return entries


def validate_journal(
    journal_path: Path,
    public_key_hex: str | None = None,
) -> tuple[bool, int]:
    """
    Validate the journal's hash chain and signatures.

    When ``public_key_hex`` is given every entry must be signed by that key;
    otherwise signed entries are checked against their embedded key and
    unsigned entries are accepted. Lines that are not UTF-8 JSON objects
    fail validation.

    Returns ``(ok, first_bad_line_number)``. ``first_bad_line_number`` is the
    1-based line index where validation failed, ``-1`` when the journal is
    valid or does not exist. A missing journal is valid and empty.
    """
    if not journal_path.exists():
        return True, -1

    prev_hash: str | None = None
    with journal_path.open("rb") as f:
        for idx, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            original = load_entry(line, public_key_hex)
            if original is None:
                return False, idx
            if original.get("prev_hash") != prev_hash:
                return False, idx
            prev_hash = hash_canonical(original)

    return True, -1

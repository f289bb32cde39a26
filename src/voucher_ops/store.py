"""Journal-backed asset ledger and nonce store."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from pathlib import Path

from .errors import (
    AuthorizationFailedError,
    InvalidNonceError,
    JournalIntegrityError,
    VoucherError,
)
from .journal import JournalSigner, append_entry, load_entry, validate_journal
from .ledger import InMemoryAssetLedger
from .nonces import InMemoryNonceStore
from .signing import normalize_identity

LOGGER = logging.getLogger(__name__)

__all__ = ["JournalStateStore"]

_EVENT_CREATED = "asset_created"
_EVENT_TRANSFERRED = "asset_transferred"
_EVENT_BURNED = "asset_burned"
_EVENT_NONCE = "nonce_incremented"
_EVENT_CLAIMED = "voucher_claimed"


class JournalStateStore:
    """Persist ledger and nonce mutations to a hash-chained journal.

    Serves the ``AssetLedger`` and ``NonceStore`` protocols from an in-memory
    ledger and nonce store, and writes one journal entry per mutation. A
    voucher claim is a single ``voucher_claimed`` entry covering both the
    transfer and the nonce increment.

    Several stores, in one process or many, may share a journal. Each
    mutation first applies the entries other writers appended, then checks
    its preconditions, all under the journal's append lock; a stale store
    therefore rejects a voucher another store already redeemed. Reads are
    served from memory and may lag until the next mutation or :meth:`refresh`.

    Args:
        path: NDJSON journal location; created on first write.
        signer: Optional Ed25519 signer applied to every new entry.
        public_key_hex: Key every existing entry must be signed with. Defaults
            to the signer's key when a signer is given.

    Raises:
        JournalIntegrityError: If the existing journal fails validation.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        signer: JournalSigner | None = None,
        public_key_hex: str | None = None,
    ) -> None:
        self._path = Path(path)
        self._signer = signer
        if public_key_hex is None and signer is not None:
            public_key_hex = signer.signing_key
        self._public_key_hex = public_key_hex
        self._lock = threading.RLock()
        with self._lock:
            self._reload()

    @property
    def path(self) -> Path:
        return self._path

    def owner_of(self, asset_id: int) -> str:
        with self._lock:
            return self._assets.owner_of(asset_id)

    def metadata_uri(self, asset_id: int) -> str:
        with self._lock:
            return self._assets.metadata_uri(asset_id)

    def current(self, identity: str) -> int:
        with self._lock:
            return self._nonces.current(identity)

    def __contains__(self, asset_id: object) -> bool:
        with self._lock:
            return asset_id in self._assets

    def __len__(self) -> int:
        with self._lock:
            return len(self._assets)

    def refresh(self) -> None:
        """Apply entries appended by other writers since the last sync."""

        with self._lock:
            self._catch_up(self._stored_lines())

    def create(self, asset_id: int, owner: str, metadata_uri: str) -> None:
        owner = normalize_identity(owner)
        self._mutate(
            {
                "event": _EVENT_CREATED,
                "asset_id": str(asset_id),
                "owner": owner,
                "metadata_uri": metadata_uri,
            },
            lambda: self._assets.create(asset_id, owner, metadata_uri),
        )

    def transfer(self, asset_id: int, from_identity: str, to_identity: str) -> None:
        from_identity = normalize_identity(from_identity)
        to_identity = normalize_identity(to_identity)
        self._mutate(
            {
                "event": _EVENT_TRANSFERRED,
                "asset_id": str(asset_id),
                "from": from_identity,
                "to": to_identity,
            },
            lambda: self._assets.transfer(asset_id, from_identity, to_identity),
        )

    def burn(self, asset_id: int, owner: str) -> None:
        owner = normalize_identity(owner)
        self._mutate(
            {"event": _EVENT_BURNED, "asset_id": str(asset_id), "owner": owner},
            lambda: self._assets.burn(asset_id, owner),
        )

    def compare_and_increment(self, identity: str, expected: int) -> int:
        identity = normalize_identity(identity)
        self._mutate(
            {"event": _EVENT_NONCE, "identity": identity, "value": expected + 1},
            lambda: self._nonces.compare_and_increment(identity, expected),
        )
        return expected + 1

    def commit_claim(
        self, asset_id: int, signer: str, claimer: str, nonce: int
    ) -> None:
        """Move ``asset_id`` from ``signer`` to ``claimer`` and consume ``nonce``.

        Both changes are written as one journal entry.

        Raises:
            InvalidNonceError: If ``nonce`` is no longer the signer's next nonce.
            AuthorizationFailedError: If ``signer`` no longer owns the asset.
            UnknownAssetError: If the asset does not exist.
        """

        signer = normalize_identity(signer)
        claimer = normalize_identity(claimer)
        self._mutate(
            {
                "event": _EVENT_CLAIMED,
                "asset_id": str(asset_id),
                "signer": signer,
                "claimer": claimer,
                "nonce": nonce,
            },
            lambda: self._apply_claim(asset_id, signer, claimer, nonce),
        )

    def _apply_claim(
        self, asset_id: int, signer: str, claimer: str, nonce: int
    ) -> None:
        owner = self._assets.owner_of(asset_id)
        stored = self._nonces.current(signer)
        if stored != nonce:
            raise InvalidNonceError(signer, stored, nonce)
        if owner != signer:
            raise AuthorizationFailedError(asset_id, signer, owner)
        self._assets.transfer(asset_id, signer, claimer)
        self._nonces.compare_and_increment(signer, nonce)

    def _mutate(self, payload: dict[str, object], apply: Callable[[], object]) -> None:
        applied = False

        def sync(lines: list[bytes]) -> None:
            nonlocal applied
            self._catch_up(lines)
            apply()
            applied = True

        with self._lock:
            try:
                append_entry(self._path, payload, self._signer, before_write=sync)
            except Exception:
                if applied:
                    # memory ran ahead of a write that never landed
                    self._reload()
                raise
            self._synced += 1

    def _stored_lines(self) -> list[bytes]:
        if not self._path.exists():
            return []
        return [
            line.strip()
            for line in self._path.read_bytes().splitlines()
            if line.strip()
        ]

    def _reload(self) -> None:
        ok, bad_line = validate_journal(self._path, self._public_key_hex)
        if not ok:
            raise JournalIntegrityError(str(self._path), bad_line)

        self._assets = InMemoryAssetLedger()
        self._nonces = InMemoryNonceStore()
        self._synced = 0
        self._catch_up(self._stored_lines())

        if self._synced:
            LOGGER.info(
                "State journal replayed",
                extra={
                    "path": str(self._path),
                    "entries": self._synced,
                    "assets": len(self._assets),
                },
            )

    def _catch_up(self, lines: list[bytes]) -> None:
        if len(lines) < self._synced:
            raise JournalIntegrityError(str(self._path), len(lines) + 1)
        for line_no, line in enumerate(lines[self._synced :], start=self._synced + 1):
            entry = load_entry(line, self._public_key_hex)
            try:
                if entry is None:
                    raise ValueError("unreadable or unverifiable entry")
                self._apply_event(entry)
            except (KeyError, ValueError, VoucherError) as exc:
                LOGGER.error(
                    "Unreadable journal entry",
                    extra={"path": str(self._path), "line": line_no, "error": str(exc)},
                )
                raise JournalIntegrityError(str(self._path), line_no) from exc
            self._synced = line_no

    def _apply_event(self, entry: dict[str, object]) -> None:
        event = entry.get("event")
        if event == _EVENT_CREATED:
            self._assets.create(
                int(str(entry["asset_id"])),
                str(entry["owner"]),
                str(entry["metadata_uri"]),
            )
        elif event == _EVENT_TRANSFERRED:
            self._assets.transfer(
                int(str(entry["asset_id"])), str(entry["from"]), str(entry["to"])
            )
        elif event == _EVENT_BURNED:
            self._assets.burn(int(str(entry["asset_id"])), str(entry["owner"]))
        elif event == _EVENT_NONCE:
            value = int(str(entry["value"]))
            self._nonces.compare_and_increment(str(entry["identity"]), value - 1)
        elif event == _EVENT_CLAIMED:
            self._apply_claim(
                int(str(entry["asset_id"])),
                str(entry["signer"]),
                str(entry["claimer"]),
                int(str(entry["nonce"])),
            )
        else:
            raise ValueError(f"unknown event {event!r}")

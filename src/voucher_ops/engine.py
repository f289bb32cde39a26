"""Voucher redemption: verify a signed voucher, then transfer and consume it."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from .digest import voucher_digest
from .environment import DomainResolver
from .errors import (
    AuthorizationFailedError,
    InvalidNonceError,
    VoucherError,
    VoucherExpiredError,
)
from .ledger import AssetLedger
from .models import ClaimReceipt, NFTVoucher
from .nonces import NonceStore
from .signing import normalize_identity, recover_signer

LOGGER = logging.getLogger(__name__)

__all__ = ["ClaimCommitter", "VoucherRedemptionEngine"]


@runtime_checkable
class ClaimCommitter(Protocol):
    """State store that records a claim's transfer and nonce bump as one write."""

    def commit_claim(
        self, asset_id: int, signer: str, claimer: str, nonce: int
    ) -> None:
        """Move ``asset_id`` to ``claimer`` and consume ``nonce``, or do neither."""


class _KeyedLocks:
    """One lock per key, dropped once no thread holds or waits for it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._users: dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class VoucherRedemptionEngine:
    """Validate vouchers and execute one-time ownership transfers.

    Digest computation and signer recovery run without locks. Everything from
    the asset lookup to the nonce increment runs while holding the signer's
    lock, so claims racing on the same signer are serialized and claims for
    different signers proceed independently.

    When one object serves as both ledger and nonce store and implements
    :class:`ClaimCommitter`, a claim is committed through it in a single
    write. Otherwise the transfer is undone if the nonce increment fails.

    Args:
        ledger: Ownership ledger the engine reads and transfers through.
        nonces: Per-signer nonce counters.
        domains: Resolver queried for the live signing domain on every call.
        clock: Returns the current Unix time. Fractions are truncated, so a
            voucher is still valid during the whole second of its expiry.
    """

    def __init__(
        self,
        ledger: AssetLedger,
        nonces: NonceStore,
        domains: DomainResolver,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ledger = ledger
        self._nonces = nonces
        self._domains = domains
        self._clock = clock
        self._signer_locks = _KeyedLocks()
        self._committer: ClaimCommitter | None = None
        if ledger is nonces and isinstance(ledger, ClaimCommitter):
            self._committer = ledger

    def digest_for(self, voucher: NFTVoucher) -> bytes:
        """Return the digest ``voucher`` must be signed over right now."""

        return voucher_digest(
            voucher.asset_id,
            voucher.nonce,
            voucher.expiry,
            self._domains.current_domain(),
        )

    def nonce_of(self, identity: str) -> int:
        """Return the nonce the next voucher from ``identity`` must carry."""

        return self._nonces.current(identity)

    def create_asset(self, asset_id: int, owner: str, metadata_uri: str) -> None:
        """Register a new asset through the ledger."""

        self._ledger.create(asset_id, owner, metadata_uri)

    def verify(self, voucher: NFTVoucher) -> str:
        """Run every redemption check without mutating state.

        Returns:
            The recovered signer address.

        Raises:
            VoucherError: The same failures :meth:`claim` would raise.
        """

        digest = self.digest_for(voucher)
        signer = recover_signer(digest, voucher.signature)
        self._check(voucher, signer)
        return signer

    def claim(self, claimer: str, voucher: NFTVoucher) -> int:
        """Redeem ``voucher`` on behalf of ``claimer``.

        Returns:
            The identifier of the transferred asset.

        Raises:
            InvalidSignatureError: The signature cannot be recovered.
            UnknownAssetError: The asset does not exist.
            AuthorizationFailedError: The signer does not own the asset.
            VoucherExpiredError: The voucher's expiry has passed.
            InvalidNonceError: The nonce is not the signer's next nonce.
        """

        return self.redeem(claimer, voucher).asset_id

    def redeem(self, claimer: str, voucher: NFTVoucher) -> ClaimReceipt:
        """Redeem ``voucher`` and return a receipt describing the transfer."""

        claimer = normalize_identity(claimer)
        try:
            digest = self.digest_for(voucher)
            signer = recover_signer(digest, voucher.signature)
            with self._signer_locks.hold(signer):
                self._check(voucher, signer)
                self._commit(voucher, signer, claimer)
        except VoucherError as exc:
            LOGGER.warning(
                "Voucher claim rejected",
                extra={
                    "asset_id": voucher.asset_id,
                    "nonce": voucher.nonce,
                    "claimer": claimer,
                    "reason": type(exc).__name__,
                },
            )
            raise

        receipt = ClaimReceipt(
            asset_id=voucher.asset_id,
            signer=signer,
            claimer=claimer,
            nonce=voucher.nonce,
            digest="0x" + digest.hex(),
            claimed_at=datetime.now(timezone.utc),
        )
        LOGGER.info(
            "Voucher claimed",
            extra={
                "asset_id": receipt.asset_id,
                "signer": signer,
                "claimer": claimer,
                "nonce": receipt.nonce,
            },
        )
        return receipt

    def _check(self, voucher: NFTVoucher, signer: str) -> None:
        owner = normalize_identity(self._ledger.owner_of(voucher.asset_id))

        now = int(self._clock())
        if now > voucher.expiry:
            raise VoucherExpiredError(voucher.expiry, now)

        # ownership is compared last so a replayed voucher fails on its nonce
        expected = self._nonces.current(signer)
        if voucher.nonce != expected:
            raise InvalidNonceError(signer, expected, voucher.nonce)

        if signer != owner:
            raise AuthorizationFailedError(voucher.asset_id, signer, owner)

    def _commit(self, voucher: NFTVoucher, signer: str, claimer: str) -> None:
        if self._committer is not None:
            self._committer.commit_claim(
                voucher.asset_id, signer, claimer, voucher.nonce
            )
            return

        self._ledger.transfer(voucher.asset_id, signer, claimer)
        try:
            self._nonces.compare_and_increment(signer, voucher.nonce)
        except Exception:
            self._ledger.transfer(voucher.asset_id, claimer, signer)
            raise

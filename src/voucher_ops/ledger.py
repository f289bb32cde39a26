"""Asset ledger collaborator: ownership and write-once metadata."""

from __future__ import annotations

import logging
import threading
from typing import Protocol, runtime_checkable

from .errors import DuplicateAssetError, MetadataAlreadySetError, UnknownAssetError
from .signing import normalize_identity

LOGGER = logging.getLogger(__name__)

__all__ = ["AssetLedger", "InMemoryAssetLedger"]


@runtime_checkable
class AssetLedger(Protocol):
    """Capability set the redemption engine needs from an ownership ledger."""

    def owner_of(self, asset_id: int) -> str:
        """Return the current owner, raising ``UnknownAssetError`` if absent."""

    def transfer(self, asset_id: int, from_identity: str, to_identity: str) -> None:
        """Move ownership; the caller has already authorized the transfer."""

    def create(self, asset_id: int, owner: str, metadata_uri: str) -> None:
        """Register a new asset with immutable metadata."""

    def metadata_uri(self, asset_id: int) -> str:
        """Return the metadata URI, raising ``UnknownAssetError`` if absent."""


class InMemoryAssetLedger:
    """Thread-safe in-process :class:`AssetLedger`.

    Metadata is write-once per identifier and outlives the asset: after
    :meth:`burn` the identifier can never be created again.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._owners: dict[int, str] = {}
        self._metadata: dict[int, str] = {}

    def owner_of(self, asset_id: int) -> str:
        with self._lock:
            owner = self._owners.get(asset_id)
            if owner is None:
                raise UnknownAssetError(asset_id)
            return owner

    def metadata_uri(self, asset_id: int) -> str:
        with self._lock:
            if asset_id not in self._owners:
                raise UnknownAssetError(asset_id)
            return self._metadata[asset_id]

    def create(self, asset_id: int, owner: str, metadata_uri: str) -> None:
        """Register ``asset_id`` for ``owner``.

        Raises:
            DuplicateAssetError: If the identifier is live.
            MetadataAlreadySetError: If metadata was written for the identifier
                before, e.g. for a burned asset.
            ValueError: If ``metadata_uri`` is empty or ``owner`` is not an
                address.
        """

        if asset_id < 0:
            raise ValueError("asset_id must be non-negative")
        if not metadata_uri:
            raise ValueError("metadata_uri must be a non-empty string")
        owner = normalize_identity(owner)
        with self._lock:
            self._check_creatable(asset_id)
            self._owners[asset_id] = owner
            self._metadata[asset_id] = metadata_uri
        LOGGER.info("Asset created", extra={"asset_id": asset_id, "owner": owner})

    def transfer(self, asset_id: int, from_identity: str, to_identity: str) -> None:
        """Move ``asset_id`` from ``from_identity`` to ``to_identity``.

        Raises:
            UnknownAssetError: If the asset does not exist.
            ValueError: If ``from_identity`` is not the current owner.
        """

        from_identity = normalize_identity(from_identity)
        to_identity = normalize_identity(to_identity)
        with self._lock:
            self._check_owned_by(asset_id, from_identity)
            self._owners[asset_id] = to_identity
        LOGGER.debug(
            "Asset transferred",
            extra={"asset_id": asset_id, "from": from_identity, "to": to_identity},
        )

    def burn(self, asset_id: int, owner: str) -> None:
        """Destroy ``asset_id``; its metadata stays reserved."""

        owner = normalize_identity(owner)
        with self._lock:
            self._check_owned_by(asset_id, owner)
            del self._owners[asset_id]
        LOGGER.info("Asset burned", extra={"asset_id": asset_id, "owner": owner})

    def __contains__(self, asset_id: object) -> bool:
        with self._lock:
            return asset_id in self._owners

    def __len__(self) -> int:
        with self._lock:
            return len(self._owners)

    def _check_creatable(self, asset_id: int) -> None:
        if asset_id in self._owners:
            raise DuplicateAssetError(asset_id)
        if asset_id in self._metadata:
            raise MetadataAlreadySetError(asset_id)

    def _check_owned_by(self, asset_id: int, identity: str) -> None:
        owner = self._owners.get(asset_id)
        if owner is None:
            raise UnknownAssetError(asset_id)
        if owner != identity:
            raise ValueError(f"Asset {asset_id} is owned by {owner}, not {identity}")

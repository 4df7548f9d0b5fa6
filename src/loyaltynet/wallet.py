"""Identity stores (wallets) keyed by identity label.

Two implementations share the async ``Wallet`` interface:

  - FileSystemWallet: one ``<label>.id`` JSON file per identity, the layout
    used by Fabric SDK wallets.
  - InMemoryWallet: a dict, for tests and short-lived processes.

``put(..., exclusive=True)`` is a compare-and-set: it stores the identity
only if the label is free and raises IdentityExistsError otherwise.
"""
from __future__ import annotations

import asyncio
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Union

from loyaltynet.errors import IdentityExistsError, InvalidParameterError
from loyaltynet.types import X509Identity
from loyaltynet.utils.logging import get_logger

logger = get_logger(__name__)

_SUFFIX = ".id"


class Wallet(ABC):
    """Async key-value store of X.509 identities."""

    @abstractmethod
    async def get(self, label: str) -> Optional[X509Identity]:
        """Returns the identity stored under label, or None."""

    @abstractmethod
    async def put(self, label: str, identity: X509Identity, *, exclusive: bool = False) -> None:
        """Stores an identity under label.

        Raises:
            IdentityExistsError: If exclusive is set and the label is taken.
        """

    @abstractmethod
    async def remove(self, label: str) -> None:
        """Removes the identity stored under label, if any."""

    @abstractmethod
    async def list(self) -> List[str]:
        """Returns the stored labels in sorted order."""


def _check_label(label: str) -> str:
    if not label or "/" in label or "\\" in label or label in (".", ".."):
        raise InvalidParameterError(f"Invalid identity label: {label!r}")
    return label


class InMemoryWallet(Wallet):

    def __init__(self) -> None:
        self._identities: Dict[str, X509Identity] = {}

    async def get(self, label: str) -> Optional[X509Identity]:
        return self._identities.get(_check_label(label))

    async def put(self, label: str, identity: X509Identity, *, exclusive: bool = False) -> None:
        _check_label(label)
        if exclusive and label in self._identities:
            raise IdentityExistsError(f"An identity for the user {label} already exists in the wallet")
        self._identities[label] = identity

    async def remove(self, label: str) -> None:
        self._identities.pop(_check_label(label), None)

    async def list(self) -> List[str]:
        return sorted(self._identities)


class FileSystemWallet(Wallet):
    """Wallet backed by a directory of ``<label>.id`` files."""

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _file(self, label: str) -> Path:
        return self._path / f"{_check_label(label)}{_SUFFIX}"

    def _read(self, label: str) -> Optional[X509Identity]:
        try:
            data = self._file(label).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return X509Identity.from_json(data)

    def _write(self, label: str, identity: X509Identity, exclusive: bool) -> None:
        target = self._file(label)
        data = identity.to_json().encode("utf-8")
        if exclusive:
            try:
                fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            except FileExistsError:
                raise IdentityExistsError(f"An identity for the user {label} already exists in the wallet") from None
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            return

        # Write then rename so readers never see a partial record.
        fd, tmp = tempfile.mkstemp(dir=self._path, prefix=f".{label}", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, target)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def _list(self) -> List[str]:
        if not self._path.is_dir():
            return []
        return sorted(p.name[: -len(_SUFFIX)] for p in self._path.glob(f"*{_SUFFIX}"))

    async def get(self, label: str) -> Optional[X509Identity]:
        return await asyncio.to_thread(self._read, label)

    async def put(self, label: str, identity: X509Identity, *, exclusive: bool = False) -> None:
        await asyncio.to_thread(self._write, label, identity, exclusive)
        logger.debug("wallet_identity_stored", label=label, path=str(self._path))

    async def remove(self, label: str) -> None:
        await asyncio.to_thread(self._file(label).unlink, missing_ok=True)

    async def list(self) -> List[str]:
        return await asyncio.to_thread(self._list)


async def new_file_system_wallet(path: Union[str, Path]) -> FileSystemWallet:
    """Creates the wallet directory if needed and returns the wallet."""
    path = Path(path)
    await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)
    logger.info("wallet_opened", path=str(path))
    return FileSystemWallet(path)

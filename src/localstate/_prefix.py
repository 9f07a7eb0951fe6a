"""Lazy, idempotent provisioning of a store's base directory."""

from __future__ import annotations

import asyncio
import logging
import os

from localstate._constants import DIR_MODE
from localstate.exceptions import LocalIOError, LocalValidationError

_logger = logging.getLogger(__name__)


def make_dirs(path: str, mode: int) -> None:
    """Create ``path`` and any missing parents, raising :class:`LocalIOError`.

    An existing directory is fine; an existing non-directory is not.
    """
    try:
        os.makedirs(path, mode=mode, exist_ok=True)
    except OSError as exc:
        raise LocalIOError(f"cannot create directory {path}: {exc}", path=path) from exc
    if not os.path.isdir(path):
        raise LocalIOError(f"{path} is not a directory", path=path)


class PrefixManager:
    """Provision one base directory on first use and remember it.

    The path is returned with a trailing separator. Once provisioned,
    :meth:`ensure` does no filesystem access. A failed attempt is not
    remembered, so the next call tries again.
    """

    def __init__(self, path: str, *, mode: int = DIR_MODE, logger: logging.Logger | None = None) -> None:
        if not os.path.isabs(path):
            raise LocalValidationError(f"prefix must be absolute, got {path!r}")
        self._path = os.path.join(os.path.normpath(path), "")
        self._mode = mode
        self._logger = logger or _logger
        self._lock = asyncio.Lock()
        self._provisioned = False

    @property
    def path(self) -> str:
        return self._path

    @property
    def provisioned(self) -> bool:
        return self._provisioned

    async def ensure(self) -> str:
        """Return the base directory, creating it if this is the first use."""
        async with self._lock:
            if self._provisioned:
                return self._path
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, make_dirs, self._path, self._mode)
            self._provisioned = True
            self._logger.debug("Provisioned prefix %s", self._path)
            return self._path

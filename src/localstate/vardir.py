"""Per-caller scratch directories rooted under the store prefix."""

from __future__ import annotations

import asyncio
import logging
import os

from localstate._constants import DIR_MODE, VAR_DIR
from localstate._prefix import PrefixManager, make_dirs
from localstate.config import LocalConfig
from localstate.exceptions import LocalValidationError

_logger = logging.getLogger(__name__)


def validate_reldir(reldir: str) -> str:
    """Return the normalised form of *reldir* (no trailing separator).

    The input must be relative, must end with ``/`` to show it names a
    directory, and must stay inside the namespace once normalised. These
    rules also exclude ``""`` and ``"/"``. ``"./"`` names the namespace
    root itself and normalises to ``"."``.
    """
    if not isinstance(reldir, str):
        raise LocalValidationError("path must be a string")
    if reldir.startswith("/"):
        raise LocalValidationError(f"path must be relative, got {reldir!r}")
    if not reldir.endswith("/"):
        raise LocalValidationError(f"path must be a dir (end with '/'), got {reldir!r}")
    if "\x00" in reldir:
        raise LocalValidationError("path must not contain NUL")
    normalized = os.path.normpath(reldir)
    if normalized == ".." or normalized.startswith("../"):
        raise LocalValidationError(f"path escapes its namespace: {reldir!r}")
    return normalized


class DirProvisioner:
    """Hand out directories below ``<prefix>/vardir/``, creating them on demand."""

    def __init__(
        self,
        prefix: str,
        *,
        subdir: str = VAR_DIR,
        dir_mode: int = DIR_MODE,
        logger: logging.Logger | None = None,
    ) -> None:
        self._logger = logger or _logger
        self._prefix = PrefixManager(os.path.join(prefix, subdir), mode=dir_mode, logger=self._logger)
        self._dir_mode = dir_mode
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: LocalConfig, *, logger: logging.Logger | None = None) -> DirProvisioner:
        return cls(config.prefix, subdir=config.var_dir, dir_mode=config.dir_mode, logger=logger)

    @property
    def path(self) -> str:
        return self._prefix.path

    async def dir(self, reldir: str) -> str:
        """Return the absolute directory for *reldir*, with a trailing separator."""
        normalized = validate_reldir(reldir)
        prefix = await self._prefix.ensure()
        result = prefix if normalized == "." else os.path.join(prefix, normalized, "")

        async with self._lock:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, make_dirs, result, self._dir_mode)
        self._logger.debug("Provisioned var dir %s", result)
        return result

"""Facade bundling every local API behind one handle."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from localstate._codec import ValueCodec
from localstate.config import LocalConfig
from localstate.value import ValueStore, ValueWatch
from localstate.vardir import DirProvisioner

_logger = logging.getLogger(__name__)


class LocalApi:
    """Local, single-machine state for a host process.

    Construct one instance at start-up and pass it to every consumer.

    Usage::

        async with LocalApi(LocalConfig(prefix="/var/lib/myapp/local")) as api:
            await api.value_set("mode", "auto")
            scratch = await api.var_dir("downloads/")
    """

    def __init__(
        self,
        config: LocalConfig,
        *,
        codec: ValueCodec | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._logger = logger or _logger
        self.value = ValueStore.from_config(config, codec=codec, logger=self._logger)
        self.var_dirs = DirProvisioner.from_config(config, logger=self._logger)

    @property
    def config(self) -> LocalConfig:
        return self._config

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> LocalApi:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.value.aclose()

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    async def value_get(self, key: str) -> Any:
        return await self.value.get(key)

    async def value_set(self, key: str, value: Any) -> None:
        await self.value.set(key, value)

    async def value_watch(self, key: str, *, stop: asyncio.Event | None = None) -> ValueWatch:
        return await self.value.watch(key, stop=stop)

    # ------------------------------------------------------------------
    # Directories
    # ------------------------------------------------------------------

    async def var_dir(self, reldir: str) -> str:
        return await self.var_dirs.dir(reldir)

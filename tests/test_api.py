from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import pytest

from localstate import LocalApi, LocalConfig


@pytest.mark.asyncio
async def test_api_round_trip(tmp_path: Path) -> None:
    config = LocalConfig(prefix=str(tmp_path))

    async with LocalApi(config) as api:
        watch = await api.value_watch("mode")
        await asyncio.wait_for(anext(watch), timeout=2.0)

        await api.value_set("mode", "auto")
        await asyncio.wait_for(anext(watch), timeout=2.0)
        assert await api.value_get("mode") == "auto"

        scratch = await api.var_dir("downloads/")
        assert Path(scratch).is_dir()
        assert scratch.startswith(f"{tmp_path}/vardir/")

    assert api.value.watcher_count == 0
    assert (tmp_path / "value" / "mode").exists()


@pytest.mark.asyncio
async def test_debug_logging_redacts_values(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    api = LocalApi(LocalConfig(prefix=str(tmp_path), debug=True))

    with caplog.at_level(logging.DEBUG, logger="localstate"):
        await api.value_set("password", "hunter2")
        await api.value_get("password")

    messages = [rec.getMessage() for rec in caplog.records]
    assert any("key=password" in msg for msg in messages)
    assert not any("hunter2" in msg for msg in messages)

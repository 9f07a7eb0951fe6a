"""Disk-backed, in-memory key-value store with change watches.

Each key lives in its own file, ``<prefix>/value/<key>``. Nothing is
loaded up front: a key is read from disk the first time it is requested
and from then on it is served from memory ("warm"). Writes go to disk
before memory, and every committed write signals the watchers registered
on that key.

A watcher's signal buffer holds one pending notification. Changes made
while a notification is still pending collapse into it, so consumers
must call :meth:`ValueStore.get` to learn the current value rather than
count notifications.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import os
from collections.abc import Coroutine
from dataclasses import dataclass, field
from typing import Any, TypeVar

from localstate._codec import TaggedValueCodec, ValueCodec
from localstate._constants import DIR_MODE, SIGNAL_BUFFER_SIZE, VALUE_DIR, VALUE_FILE_MODE
from localstate._prefix import PrefixManager
from localstate._redact import summarize_value
from localstate.config import LocalConfig
from localstate.exceptions import (
    LocalDecodeError,
    LocalIOError,
    LocalProgrammingError,
    LocalValidationError,
)

_logger = logging.getLogger(__name__)

T = TypeVar("T")

_TOKEN = object()


def validate_key(key: str) -> str:
    """Return *key* if it can be used as a value file name."""
    if not isinstance(key, str) or not key:
        raise LocalValidationError("key must be a non-empty string")
    if key in {".", ".."} or "/" in key or os.sep in key or "\x00" in key:
        raise LocalValidationError(f"invalid key {key!r}")
    return key


def _value_read(path: str, codec: ValueCodec) -> Any:
    """Read and decode one value file. A missing file is the absent value."""
    try:
        with open(path, encoding="utf-8") as fh:
            text = fh.read()
    except FileNotFoundError:
        return None
    except UnicodeDecodeError as exc:
        raise LocalDecodeError(f"value file {path} is not valid UTF-8") from exc
    except OSError as exc:
        raise LocalIOError(f"cannot read {path}: {exc}", path=path) from exc
    return codec.decode(text.strip())


def _value_write(path: str, text: str, mode: int) -> None:
    data = f"{text}\n".encode()  # files end with a newline
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
    except OSError as exc:
        raise LocalIOError(f"cannot write {path}: {exc}", path=path) from exc


def _value_remove(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        return
    except OSError as exc:
        raise LocalIOError(f"cannot remove {path}: {exc}", path=path) from exc


async def _until_stopped(coro: Coroutine[Any, Any, T], stop: asyncio.Event) -> asyncio.Future[T] | None:
    """Run *coro* until it finishes or *stop* is set.

    Returns the finished future, or ``None`` when *stop* won the race.
    """
    if stop.is_set():
        coro.close()
        return None
    work = asyncio.ensure_future(coro)
    stopper = asyncio.ensure_future(stop.wait())
    try:
        done, _ = await asyncio.wait({work, stopper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stopper.cancel()
        if not work.done():
            work.cancel()
    if work in done:
        return work
    return None


@dataclass(eq=False)
class _Watcher:
    """One registration made by :meth:`ValueStore.watch`. Hashed by identity."""

    key: str
    stop: asyncio.Event
    signal: asyncio.Queue[object] = field(default_factory=lambda: asyncio.Queue(maxsize=SIGNAL_BUFFER_SIZE))
    task: asyncio.Task[None] | None = None


class ValueWatch:
    """Cancellable stream of change notifications for one key.

    Iterating yields ``None`` once per (possibly coalesced) change, plus
    once right after subscribing. Iteration ends after :meth:`cancel`.

    Between the store and the consumer sit two one-slot buffers: the
    watcher's signal buffer and the stream's own. A consumer that stops
    draining can therefore find up to two changes pending (three right
    after subscribing, counting the startup notification), never more.

    Usage::

        async with await store.watch("mode") as watch:
            async for _ in watch:
                mode = await store.get("mode")
    """

    def __init__(self, key: str, out: asyncio.Queue[None], stop: asyncio.Event, task: asyncio.Task[None]) -> None:
        self.key = key
        self._out = out
        self._stop = stop
        self._task = task

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def cancel(self) -> None:
        """Stop delivering notifications. Bookkeeping is released shortly after."""
        self._stop.set()

    async def aclose(self) -> None:
        """Cancel and wait until the watch is fully unregistered."""
        self.cancel()
        await self._finish()

    async def _finish(self) -> None:
        await asyncio.wait({self._task})
        self._raise_from_task()

    def _raise_from_task(self) -> None:
        if self._task.cancelled():
            return
        exc = self._task.exception()
        if exc is not None:
            raise exc

    def __aiter__(self) -> ValueWatch:
        return self

    async def __anext__(self) -> None:
        if self._stop.is_set():
            await self._finish()
            raise StopAsyncIteration
        if not self._task.done():
            getter = asyncio.ensure_future(self._out.get())
            try:
                done, _ = await asyncio.wait({getter, self._task}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                if not getter.done():
                    getter.cancel()
            if getter in done:
                return getter.result()
        elif not self._out.empty():
            return self._out.get_nowait()
        self._raise_from_task()
        raise StopAsyncIteration

    async def __aenter__(self) -> ValueWatch:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()


class ValueStore:
    """Get, set and watch local values.

    Values are arbitrary codec-supported objects; ``None`` is the absent
    value and setting it deletes the key. A single :class:`asyncio.Lock`
    guards the cache, the warm set and the watcher registry. Disk access
    for a key happens while that lock is held, so any caller acquiring
    the lock next observes disk and memory in agreement.
    """

    def __init__(
        self,
        prefix: str,
        *,
        subdir: str = VALUE_DIR,
        codec: ValueCodec | None = None,
        file_mode: int = VALUE_FILE_MODE,
        dir_mode: int = DIR_MODE,
        debug: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        self._logger = logger or _logger
        self._prefix = PrefixManager(os.path.join(prefix, subdir), mode=dir_mode, logger=self._logger)
        self._codec: ValueCodec = codec or TaggedValueCodec()
        self._file_mode = file_mode
        self._debug = debug
        self._lock = asyncio.Lock()
        self._cache: dict[str, Any] = {}
        # Keys whose presence or absence is already known in memory.
        # Never shrinks.
        self._warm: set[str] = set()
        # One entry per active watch; several may share a key.
        self._watchers: dict[_Watcher, str] = {}

        # Keys are not loaded up front: most may never be used, and the
        # first read of each key warms it.
        # TODO: expire keys untouched for a long time so the on-disk
        # directory does not grow without bound.

    @classmethod
    def from_config(cls, config: LocalConfig, **kwargs: Any) -> ValueStore:
        return cls(
            config.prefix,
            subdir=config.value_dir,
            file_mode=config.file_mode,
            dir_mode=config.dir_mode,
            debug=config.debug,
            **kwargs,
        )

    @property
    def path(self) -> str:
        """Directory holding the value files (with trailing separator)."""
        return self._prefix.path

    @property
    def watcher_count(self) -> int:
        return len(self._watchers)

    async def get(self, key: str) -> Any:
        """Return the value for *key*, or ``None`` if it is not set.

        A read or decode failure is raised and the key stays cold, so the
        next call goes back to disk instead of caching the failure as an
        absent value.
        """
        validate_key(key)
        prefix = await self._prefix.ensure()

        async with self._lock:
            value: Any = None
            if key not in self._warm:
                loop = asyncio.get_running_loop()
                value = await loop.run_in_executor(None, _value_read, prefix + key, self._codec)

            # Anything in memory overrides what was read.
            if key in self._cache:
                value = self._cache[key]
            else:
                self._warm.add(key)

            if self._debug:
                self._logger.debug("Value get key=%s value=%s", key, summarize_value(value))
            return copy.deepcopy(value)

    async def set(self, key: str, value: Any) -> None:
        """Store *value* under *key*; ``None`` removes the key.

        The file is written (or removed) before memory is updated. If that
        fails nothing in memory changes and no watcher is notified.

        Once the value has been encoded the commit runs to completion even
        if the caller is cancelled, so memory never lags behind a write
        that reached the disk.
        """
        validate_key(key)
        text = None if value is None else self._codec.encode(value)
        prefix = await self._prefix.ensure()

        commit = asyncio.ensure_future(self._commit(key, prefix + key, value, text))
        try:
            await asyncio.shield(commit)
        except asyncio.CancelledError:
            commit.add_done_callback(self._on_detached_commit_done)
            raise

    async def _commit(self, key: str, path: str, value: Any, text: str | None) -> None:
        async with self._lock:
            loop = asyncio.get_running_loop()
            if text is None:
                await loop.run_in_executor(None, _value_remove, path)
                self._cache.pop(key, None)
            else:
                await loop.run_in_executor(None, _value_write, path, text, self._file_mode)
                # Cache what a cold read would return.
                self._cache[key] = self._codec.decode(text)
            self._warm.add(key)

            # Removal notifies too. Never blocks: a full buffer already
            # holds a pending notification that covers this change.
            notified = 0
            for watcher, watched in self._watchers.items():
                if watched != key:
                    continue
                try:
                    watcher.signal.put_nowait(_TOKEN)
                    notified += 1
                except asyncio.QueueFull:
                    pass

            if self._debug:
                self._logger.debug(
                    "Value set key=%s value=%s notified=%d",
                    key,
                    summarize_value(value),
                    notified,
                )

    def _on_detached_commit_done(self, task: asyncio.Future[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error("Value set finished after its caller was cancelled and failed", exc_info=exc)

    async def watch(self, key: str, *, stop: asyncio.Event | None = None) -> ValueWatch:
        """Subscribe to changes of *key*.

        The returned watch yields one notification immediately, then one
        per (coalesced) change. Setting *stop*, or cancelling the watch,
        ends it. Watches never touch the disk.
        """
        validate_key(key)
        if stop is None:
            stop = asyncio.Event()
        out: asyncio.Queue[None] = asyncio.Queue(maxsize=1)

        async with self._lock:
            watcher = _Watcher(key=key, stop=stop)
            self._watchers[watcher] = key
            watcher.signal.put_nowait(_TOKEN)  # startup signal
            task = asyncio.create_task(self._forward(watcher, out), name=f"localstate-watch:{key}")
            watcher.task = task
            task.add_done_callback(self._on_forward_done)

        if self._debug:
            self._logger.debug("Value watch key=%s watchers=%d", key, len(self._watchers))
        return ValueWatch(key, out, stop, task)

    async def _forward(self, watcher: _Watcher, out: asyncio.Queue[None]) -> None:
        try:
            while True:
                received = await _until_stopped(watcher.signal.get(), watcher.stop)
                if received is None:
                    return
                if received.result() is not _TOKEN:
                    raise LocalProgrammingError(f"unexpected item on signal buffer for key {watcher.key!r}")

                # Blocks until the consumer is ready; this is the only
                # place a send can wait, and it never holds the lock.
                sent = await _until_stopped(out.put(None), watcher.stop)
                if sent is None:
                    return
        finally:
            async with self._lock:
                del self._watchers[watcher]

    def _on_forward_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error("Watch forwarding task %s failed", task.get_name(), exc_info=exc)

    async def aclose(self) -> None:
        """Stop every active watch and wait for them to unregister."""
        async with self._lock:
            watchers = list(self._watchers)
        for watcher in watchers:
            watcher.stop.set()
        tasks = [w.task for w in watchers if w.task is not None]
        if tasks:
            await asyncio.wait(tasks)

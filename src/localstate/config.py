"""Configuration for localstate."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from localstate._constants import DIR_MODE, VALUE_DIR, VALUE_FILE_MODE, VAR_DIR
from localstate.exceptions import LocalConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_mode(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value.strip(), 8)
    except ValueError as exc:
        raise LocalConfigError(f"file mode must be octal, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class LocalConfig:
    """Store configuration.

    Parameters
    ----------
    prefix : str
        Absolute base directory. Each API keeps its data in its own
        subdirectory below it.
    debug : bool
        Log every get/set/watch at DEBUG level.
    value_dir : str
        Subdirectory of ``prefix`` that holds one file per value key.
    var_dir : str
        Subdirectory of ``prefix`` under which ``DirProvisioner`` hands
        out directories.
    file_mode : int
        Permission bits for newly created value files.
    dir_mode : int
        Permission bits for newly created directories.
    """

    prefix: str
    debug: bool = False
    value_dir: str = VALUE_DIR
    var_dir: str = VAR_DIR
    file_mode: int = VALUE_FILE_MODE
    dir_mode: int = DIR_MODE

    def __post_init__(self) -> None:
        if not self.prefix:
            raise LocalConfigError("prefix must be non-empty")
        if not os.path.isabs(self.prefix):
            raise LocalConfigError(f"prefix must be absolute, got {self.prefix!r}")
        for name in (self.value_dir, self.var_dir):
            if not name or "/" in name or name in {".", ".."}:
                raise LocalConfigError(f"invalid subdirectory name {name!r}")

    @property
    def value_path(self) -> str:
        return os.path.join(self.prefix, self.value_dir)

    @property
    def var_path(self) -> str:
        return os.path.join(self.prefix, self.var_dir)

    @classmethod
    def from_env(cls, **overrides: Any) -> LocalConfig:
        """Create configuration from environment variables.

        Reads ``LOCALSTATE_PREFIX`` and the optional ``LOCALSTATE_DEBUG``,
        ``LOCALSTATE_FILE_MODE`` and ``LOCALSTATE_DIR_MODE`` variables.
        Explicit keyword arguments override environment values.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        prefix = env.get("LOCALSTATE_PREFIX")
        if prefix is not None:
            config_kwargs["prefix"] = prefix

        if "debug" not in overrides:
            config_kwargs["debug"] = _env_bool(env.get("LOCALSTATE_DEBUG"), False)

        if "file_mode" not in overrides:
            config_kwargs["file_mode"] = _env_mode(env.get("LOCALSTATE_FILE_MODE"), VALUE_FILE_MODE)
        if "dir_mode" not in overrides:
            config_kwargs["dir_mode"] = _env_mode(env.get("LOCALSTATE_DIR_MODE"), DIR_MODE)

        config_kwargs.update(overrides)
        if "prefix" not in config_kwargs:
            raise LocalConfigError("LOCALSTATE_PREFIX is not set and no prefix was given")

        return cls(**config_kwargs)

"""localstate - disk-backed, in-memory local value store with change watches."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("localstate")
except PackageNotFoundError:
    __version__ = "0+local"
from localstate._codec import TaggedValue, TaggedValueCodec, ValueCodec, ValueTag
from localstate.api import LocalApi
from localstate.config import LocalConfig
from localstate.exceptions import (
    LocalCodecError,
    LocalConfigError,
    LocalDecodeError,
    LocalEncodeError,
    LocalError,
    LocalIOError,
    LocalProgrammingError,
    LocalValidationError,
)
from localstate.value import ValueStore, ValueWatch
from localstate.vardir import DirProvisioner

__all__ = [
    "__version__",
    "DirProvisioner",
    "LocalApi",
    "LocalCodecError",
    "LocalConfig",
    "LocalConfigError",
    "LocalDecodeError",
    "LocalEncodeError",
    "LocalError",
    "LocalIOError",
    "LocalProgrammingError",
    "LocalValidationError",
    "TaggedValue",
    "TaggedValueCodec",
    "ValueCodec",
    "ValueStore",
    "ValueTag",
    "ValueWatch",
]

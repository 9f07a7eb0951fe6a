"""Internal constants shared across the library."""

VALUE_DIR = "value"
VAR_DIR = "vardir"

# Values may be sensitive, so files are owner-only.
VALUE_FILE_MODE = 0o600
DIR_MODE = 0o755

# Capacity of each watcher's internal signal buffer. One pending signal
# covers any number of changes made before it is drained.
SIGNAL_BUFFER_SIZE = 1

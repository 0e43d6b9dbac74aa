"""
Stream rotator constants, defaults and exit codes.
"""

# Read buffer size (default: 64 KiB)
DEFAULT_CHUNK_SIZE = 64 * 1024

# Naming
DEFAULT_SEQ_WIDTH = 6
TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S"  # + 6 digits of microseconds
DISAMBIGUATOR_WIDTH = 3
MAX_NAME_ATTEMPTS = 1000  # names drawn before a naming conflict becomes fatal

# Reattachment backoff (seconds)
DEFAULT_BACKOFF_INITIAL = 0.5
DEFAULT_BACKOFF_MAX = 30.0
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_COOLDOWN = 1.0  # writer sessions shorter than this count as failures
BACKOFF_WAIT_SLICE = 0.1  # a stop() from another thread is noticed within this

# Shutdown
DEFAULT_SHUTDOWN_GRACE = 2.0  # seconds spent draining buffered source bytes

# Engine state transitions kept for inspection (older ones are dropped)
STATE_HISTORY_SIZE = 64

# FIFO created by --mkfifo
FIFO_MODE = 0o600

# Process exit codes
EXIT_OK = 0
EXIT_INTERNAL_ERROR = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_SOURCE_UNAVAILABLE = 3
EXIT_READ_ERROR = 4
EXIT_WRITE_ERROR = 5

"""Constants and defaults.

Note: Keep constants here to avoid magic numbers spread across code.
"""

DEFAULT_TIMEZONE_OFFSET = "+08:00"
DEFAULT_REMINDER_MINUTES = 15

DEFAULT_BATCH_SIZE = 50
DEFAULT_MAX_CONCURRENCY = 5

# Queue priorities: higher runs first.
PRIORITY_REMOVAL = 9
PRIORITY_ATTENDANCE_TABLE = 8
PRIORITY_PARTICIPANT = 6

DEFAULT_QUEUE_WORKERS = 4
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 2.0
DEFAULT_MAX_BACKOFF_SECONDS = 60.0

DEFAULT_HTTP_TIMEOUT_SECONDS = 15.0

# 0 disables pooling (one connection per call).
DEFAULT_DB_POOL_SIZE = 5

TASK_NAME_PREFIX = "sync"

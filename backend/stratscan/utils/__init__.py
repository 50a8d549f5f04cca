# Shared utilities — concurrency limiting, retry
from stratscan.utils.concurrency import ConcurrencyLimiter
from stratscan.utils.retry import with_retry

__all__ = ["ConcurrencyLimiter", "with_retry"]

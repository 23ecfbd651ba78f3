"""Small shared utilities."""

from specsheet.utils.concurrency import (
    CancellationToken,
    poll_until,
    run_with_timeout,
    sleep_or_cancel,
)

__all__ = [
    "CancellationToken",
    "poll_until",
    "run_with_timeout",
    "sleep_or_cancel",
]

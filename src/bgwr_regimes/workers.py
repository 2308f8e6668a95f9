"""Thread-pool sizing shared by the chain runner and the oracle batch."""

import os


def worker_count(requested: int, max_workers: int) -> int:
    """Threads for ``requested`` tasks, capped by max_workers and the machine's cores."""
    return max(1, min(requested, max_workers, os.cpu_count() or 1))

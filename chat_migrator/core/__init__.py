"""Rate-limited execution core: buckets, registry, retries, ordering and concurrency."""

__all__ = [
    "classifier",
    "config",
    "coordinator",
    "executor",
    "governor",
    "registry",
    "retry",
    "run_log",
    "sequencer",
    "token_bucket",
]

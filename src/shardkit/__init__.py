"""shardkit — test sharding, change-based selection and flaky-test detection for CI."""

__version__ = "0.1.0"

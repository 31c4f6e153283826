"""Runtime harness — retry infrastructure shared by the provider and scheduler."""
from nexus.harness.retry import RetryConfig, compute_delay, is_retryable_error, with_retries

__all__ = ["RetryConfig", "compute_delay", "is_retryable_error", "with_retries"]

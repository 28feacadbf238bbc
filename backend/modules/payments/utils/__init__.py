# backend/modules/payments/utils/__init__.py

from .retry_decorator import RetryConfig, retry_async, is_retryable_error

__all__ = ["RetryConfig", "retry_async", "is_retryable_error"]

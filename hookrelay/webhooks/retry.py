"""Retry scheduling for failed deliveries.

Pure functions mapping an attempt number and a retry policy to the
delay before the next attempt:

    delay = min(initial_backoff_ms * backoff_multiplier ** (attempt - 1), max_backoff_ms)

With the defaults (1s initial, x2, 5 minute cap) the sequence is
1s, 2s, 4s, 8s, ... 300s.
"""

from datetime import datetime, timedelta

from hookrelay.webhooks.models import RetryPolicy


def compute_backoff_ms(attempt: int, policy: RetryPolicy) -> int:
    """Compute the retry delay for a failed attempt.

    Args:
        attempt: Number of failed attempts so far (1 for the first failure).
        policy: Retry policy of the endpoint.

    Returns:
        Delay in milliseconds, never above ``policy.max_backoff_ms``.

    Raises:
        ValueError: If attempt is less than 1.
    """
    if attempt < 1:
        raise ValueError("attempt must be >= 1")

    # Cap before exponentiating; large attempt counts would overflow a float.
    exponent = min(attempt - 1, 64)
    delay = policy.initial_backoff_ms * policy.backoff_multiplier**exponent
    return int(min(delay, policy.max_backoff_ms))


def next_retry_at(attempt: int, policy: RetryPolicy, now: datetime) -> datetime:
    """Compute when a failed job becomes eligible again.

    Args:
        attempt: Number of failed attempts so far.
        policy: Retry policy of the endpoint.
        now: Time of the failure.

    Returns:
        Absolute time of the next attempt.
    """
    return now + timedelta(milliseconds=compute_backoff_ms(attempt, policy))


def should_retry(attempt: int, policy: RetryPolicy) -> bool:
    """Whether a job with ``attempt`` failures still has budget left."""
    return attempt < policy.max_retries


def backoff_schedule(policy: RetryPolicy) -> list[int]:
    """List the delays for attempts 1..max_retries.

    Args:
        policy: Retry policy.

    Returns:
        Delays in milliseconds, one per attempt.
    """
    return [compute_backoff_ms(attempt, policy) for attempt in range(1, policy.max_retries + 1)]

import asyncio
import random

from errors import ProviderTransient

# Retry configuration for provider API calls
MAX_RETRIES = 3
INITIAL_RETRY_DELAY = 1.0  # seconds
MAX_RETRY_DELAY = 30.0  # seconds
RETRY_BACKOFF_MULTIPLIER = 2.0


async def retry_with_exponential_backoff(
    func,
    *args,
    max_retries: int = MAX_RETRIES,
    initial_delay: float = INITIAL_RETRY_DELAY,
    max_delay: float = MAX_RETRY_DELAY,
    backoff_multiplier: float = RETRY_BACKOFF_MULTIPLIER,
    retryable_exceptions: tuple = (ProviderTransient,),
    label: str = "API call",
    **kwargs,
):
    """
    Await `func(*args, **kwargs)`, retrying transient failures with
    exponential backoff and jitter. Anything not in `retryable_exceptions`
    propagates immediately.
    """
    delay = initial_delay

    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            if attempt == max_retries:
                print(f"  ❌ {label}: final retry attempt failed: {e}")
                raise

            # Add jitter to prevent thundering herd
            jitter = random.uniform(0.5, 1.5)
            wait_time = min(delay * jitter, max_delay)

            print(f"  ⚠️ {label} error (attempt {attempt + 1}/{max_retries + 1}): {str(e)[:100]}")
            print(f"  ⏳ Retrying in {wait_time:.1f}s...")

            await asyncio.sleep(wait_time)
            delay *= backoff_multiplier

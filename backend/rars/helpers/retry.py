"""Bounded exponential-backoff retry for remote calls.

Every call that leaves the process (object store, SMTP relay) is wrapped
with :func:`with_retry`: 3 attempts, 0.5 s base delay, doubling.  Typed
domain errors are fatal immediately except :class:`UpstreamFailure`.
"""

import asyncio
import logging
from functools import wraps

from rars.errors import RarsError, UpstreamFailure

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
INITIAL_BACKOFF = 0.5  # seconds
BACKOFF_MULTIPLIER = 2


def with_retry(
    max_retries: int = MAX_RETRIES,
    initial_backoff: float = INITIAL_BACKOFF,
):
    """
    Decorator for retrying async functions with exponential backoff.

    Raises the last exception once all attempts are exhausted.
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            last_exception = None

            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except UpstreamFailure as e:
                    last_exception = e
                except RarsError:
                    # Guard, role and validation failures never succeed on retry
                    raise
                except Exception as e:
                    last_exception = e

                if attempt + 1 < max_retries:
                    wait_time = initial_backoff * (BACKOFF_MULTIPLIER**attempt)
                    logger.warning(
                        f"{func.__name__} failed ({last_exception}), retrying in "
                        f"{wait_time}s (attempt {attempt + 1}/{max_retries})"
                    )
                    await asyncio.sleep(wait_time)

            logger.error(f"All {max_retries} retries exhausted for {func.__name__}")
            raise last_exception

        return wrapper

    return decorator

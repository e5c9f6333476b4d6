"""
Job retry classification
Permanent failures end the job as a skip; transient failures go back to arq with backoff.
"""

import asyncio
import functools
import logging

from arq import Retry
from pydantic import BaseModel, ConfigDict
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (OperationalError, asyncio.TimeoutError, ConnectionError, RedisConnectionError)


class PermanentJobError(Exception):
    """A referenced group, prompt or settings row is gone; retrying cannot help"""


class RetryPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_tries: int
    base_delay: float  # seconds
    exponential: bool = True

    def delay_for(self, job_try: int) -> float:
        """Backoff before attempt job_try + 1"""
        if not self.exponential:
            return self.base_delay
        return self.base_delay * 2 ** max(job_try - 1, 0)


def with_retry_policy(policy: RetryPolicy):
    """Wrap an arq coroutine so failures follow the family's retry policy"""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(ctx, *args, **kwargs):
            job_id = ctx.get("job_id", "unknown")
            job_try = ctx.get("job_try", 1)
            try:
                return await func(ctx, *args, **kwargs)
            except PermanentJobError as e:
                logger.warning(f"⏭️ Job {job_id} ({func.__name__}) skipped: {e}")
                return {"status": "skipped", "reason": str(e)}
            except TRANSIENT_ERRORS as e:
                if job_try < policy.max_tries:
                    delay = policy.delay_for(job_try)
                    logger.warning(
                        f"🔁 Job {job_id} ({func.__name__}) try {job_try}/{policy.max_tries} "
                        f"failed with {type(e).__name__}, retrying in {delay:.0f}s"
                    )
                    raise Retry(defer=delay) from e
                logger.error(
                    f"❌ Job {job_id} ({func.__name__}) failed after {job_try} tries: {type(e).__name__}: {e}"
                )
                raise

        return wrapper

    return decorator

"""
Error containment for background work.

Request handlers and services let BasePermitException propagate. Scheduled
jobs and shutdown hooks have no caller to propagate to, so they go through
ErrorHandler: the failure is logged with the job context and a default is
returned instead.
"""

import time
from typing import Any, Coroutine, Optional, TypeVar

from logging_config import get_logger, log_error

logger = get_logger(__name__)
T = TypeVar('T')


class ErrorHandler:

    @staticmethod
    async def safe_execute_async(
        coro: Coroutine[Any, Any, T],
        default: Optional[T] = None,
        context: dict | None = None,
        log_level: str = "ERROR"
    ) -> Optional[T]:
        """
        Await `coro`; on failure log it and return `default`.

        Usage:
            report = await ErrorHandler.safe_execute_async(
                runner.run_all_active(),
                context={"job": "conflict_sweep"}
            )
        """
        try:
            return await coro
        except Exception as e:
            log_error(e, context, log_level)
            return default

    @staticmethod
    async def run_job(
        job: str,
        coro: Coroutine[Any, Any, T],
        default: Optional[T] = None
    ) -> Optional[T]:
        """Run a scheduled job: started/finished events with duration, failures contained."""
        started = time.monotonic()
        logger.info("job_started", job=job)

        result = await ErrorHandler.safe_execute_async(coro, default=default, context={"job": job})

        logger.info(
            "job_finished",
            job=job,
            ok=result is not default,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
        )
        return result

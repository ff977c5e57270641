"""
External call guard for OCR and vision-language services
Runs a blocking call in a worker thread with a timeout and a bounded number of retries
"""

import time
import logging
import threading
from typing import Callable, TypeVar, Optional
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError

from services.error_types import ServiceTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class ExternalCallGuard:
    """
    Executes external service calls off the caller's thread.

    Key principles:
    1. Every call is bounded by a timeout
    2. A failed or timed-out attempt is retried (once by default)
    3. A call that times out on every attempt raises ServiceTimeoutError,
       any other failure re-raises the last exception
    """

    def __init__(self, max_workers: int = 8, default_timeout: float = 30.0):
        self.max_workers = max_workers
        self.default_timeout = default_timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="External_Call")

    def call(
        self,
        operation_func: Callable[[], T],
        operation_name: str,
        timeout_seconds: Optional[float] = None,
        retries: int = 1,
        retry_delay: float = 0.1
    ) -> T:
        """
        Execute ``operation_func`` with timeout and retry

        Args:
            operation_func: Zero-argument callable performing the service call
            operation_name: Name of operation for logging
            timeout_seconds: Per-attempt timeout (uses default if None)
            retries: Extra attempts after the first one
            retry_delay: Delay between attempts in seconds

        Returns:
            Result of operation_func

        Raises:
            ServiceTimeoutError: If every attempt timed out
            Exception: The last non-timeout error raised by operation_func
        """
        timeout = timeout_seconds or self.default_timeout
        thread_name = threading.current_thread().name
        last_error: Optional[BaseException] = None
        timed_out = False

        for attempt in range(retries + 1):
            logger.debug(f"[Thread {thread_name}] Executing {operation_name} "
                         f"(attempt {attempt + 1}/{retries + 1}, timeout {timeout}s)")
            future = self._executor.submit(operation_func)
            try:
                return future.result(timeout=timeout)
            except FutureTimeoutError:
                future.cancel()
                timed_out = True
                last_error = None
                logger.warning(f"[Thread {thread_name}] {operation_name} timed out after {timeout}s "
                               f"on attempt {attempt + 1}/{retries + 1}")
            except Exception as e:
                timed_out = False
                last_error = e
                logger.warning(f"[Thread {thread_name}] {operation_name} failed on attempt "
                               f"{attempt + 1}/{retries + 1}: {type(e).__name__}: {str(e)}")

            if attempt < retries:
                time.sleep(retry_delay)

        if timed_out or last_error is None:
            raise ServiceTimeoutError(
                f"{operation_name} timed out after {retries + 1} attempts",
                {'timeout_seconds': timeout, 'attempts': retries + 1}
            )
        raise last_error

    def close(self):
        """Clean shutdown of thread pool"""
        logger.info("Shutting down external call guard")
        self._executor.shutdown(wait=False)


# Global instance
external_call_guard = ExternalCallGuard()


def call_with_timeout(
    operation_func: Callable[[], T],
    operation_name: str,
    timeout_seconds: Optional[float] = None,
    retries: int = 1
) -> T:
    """Convenience wrapper around the global guard"""
    return external_call_guard.call(
        operation_func,
        operation_name,
        timeout_seconds=timeout_seconds,
        retries=retries
    )

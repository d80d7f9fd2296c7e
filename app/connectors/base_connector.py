"""
Base connector class for external data sources
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from datetime import datetime
from app.utils.logger import log
from app.utils.retry import RetryStats, is_retryable_error, calculate_backoff
import asyncio


class BaseConnector(ABC):
    """Base class for data source connectors"""

    # Retry configuration (can be overridden by subclasses or per instance)
    RETRY_MAX_ATTEMPTS = 3
    RETRY_BASE_DELAY = 2.0  # seconds
    RETRY_MAX_DELAY = 60.0  # seconds

    def __init__(
        self,
        name: str,
        retry_max_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        retry_max_delay: Optional[float] = None,
    ):
        self.name = name
        self.retry_max_attempts = max(1, retry_max_attempts or self.RETRY_MAX_ATTEMPTS)
        self.retry_base_delay = self.RETRY_BASE_DELAY if retry_base_delay is None else retry_base_delay
        self.retry_max_delay = self.RETRY_MAX_DELAY if retry_max_delay is None else retry_max_delay
        self.last_request = None
        self.request_count = 0
        self.error_count = 0
        self.retry_count = 0  # Total retries across all requests

    @abstractmethod
    async def connect(self) -> bool:
        """Establish connection to data source"""
        pass

    @abstractmethod
    async def validate_connection(self) -> bool:
        """Validate connection is working"""
        pass

    async def _retry_operation(
        self,
        operation,
        operation_name: str = "operation",
        retry_stats: Optional[RetryStats] = None
    ) -> Any:
        """
        Execute an operation with retry logic.

        Args:
            operation: Callable (sync or returning a coroutine) to execute
            operation_name: Name for logging
            retry_stats: RetryStats to record attempts in (mutated in place)

        Returns:
            Result of the operation
        """
        stats = retry_stats if retry_stats is not None else RetryStats()
        last_error = None

        for attempt in range(1, self.retry_max_attempts + 1):
            try:
                self.request_count += 1
                result = operation()

                # Handle coroutines (from async functions or lambdas wrapping async calls)
                if asyncio.iscoroutine(result):
                    result = await result

                stats.record_attempt()
                stats.mark_success()
                self.last_request = datetime.utcnow()

                if attempt > 1:
                    self.retry_count += (attempt - 1)
                    log.info(
                        f"{self.name} {operation_name} succeeded on attempt {attempt} "
                        f"after {stats.total_delay_seconds:.1f}s total delay"
                    )

                return result

            except Exception as e:
                last_error = e

                # Check if we should retry
                if attempt >= self.retry_max_attempts or not is_retryable_error(e):
                    stats.record_attempt(error=e)
                    self.error_count += 1
                    raise

                delay = calculate_backoff(
                    attempt,
                    base_delay=self.retry_base_delay,
                    max_delay=self.retry_max_delay
                )
                stats.record_attempt(error=e, delay=delay)

                log.warning(
                    f"{self.name} {operation_name} attempt {attempt} failed: {e}. "
                    f"Retrying in {delay:.1f}s..."
                )

                await asyncio.sleep(delay)

        # Should not reach here
        raise last_error if last_error else RuntimeError("Retry exhausted")

    def get_status(self) -> Dict[str, Any]:
        """Get connector status"""
        return {
            "name": self.name,
            "last_request": self.last_request,
            "request_count": self.request_count,
            "error_count": self.error_count,
            "retry_count": self.retry_count,
            "error_rate": self.error_count / max(self.request_count, 1),
            "retry_config": {
                "max_attempts": self.retry_max_attempts,
                "base_delay": self.retry_base_delay,
                "max_delay": self.retry_max_delay
            }
        }

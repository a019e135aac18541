"""
core/bulkhead.py - Bulkhead Pattern for Upstream Protection

Caps how many calls run against an upstream at once and bounds each
call with a timeout, so a large reconciliation fan-out cannot flood
the RPC endpoint.

Features:
- Concurrent execution limits per bulkhead
- Timeout protection
- Metrics collection
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any, TypeVar, Awaitable

logger = logging.getLogger(__name__)

T = TypeVar('T')


class BulkheadError(Exception):
    """Base exception for bulkhead errors."""
    pass


class BulkheadTimeoutError(BulkheadError):
    """Raised when operation times out within bulkhead."""

    def __init__(self, bulkhead_name: str, timeout: float):
        self.bulkhead_name = bulkhead_name
        self.timeout = timeout
        super().__init__(f"Operation in bulkhead '{bulkhead_name}' timed out after {timeout}s")


@dataclass
class BulkheadConfig:
    """Configuration for a bulkhead."""
    max_concurrent: int = 8           # Max concurrent executions
    timeout: float = 10.0             # Timeout per operation (seconds)


@dataclass
class BulkheadMetrics:
    """Metrics for a bulkhead."""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    timeout_requests: int = 0
    current_concurrent: int = 0
    max_concurrent_reached: int = 0
    last_failure_time: Optional[datetime] = None
    last_success_time: Optional[datetime] = None


class Bulkhead:
    """
    Concurrency-limited, timeout-protected execution slot.

    Example:
        bulkhead = Bulkhead("chain_reads", BulkheadConfig(max_concurrent=8))

        shares = await bulkhead.execute(fetcher.fetch(key))
    """

    def __init__(self, name: str, config: Optional[BulkheadConfig] = None):
        self.name = name
        self.config = config or BulkheadConfig()
        if self.config.max_concurrent < 1:
            raise ValueError(f"Bulkhead '{name}' needs max_concurrent >= 1")
        self.semaphore = asyncio.Semaphore(self.config.max_concurrent)
        self.metrics = BulkheadMetrics()

    async def execute(self, coro: Awaitable[T], timeout: Optional[float] = None) -> T:
        """
        Execute a coroutine within the bulkhead.

        Args:
            coro: Coroutine to execute
            timeout: Override default timeout (optional)

        Returns:
            Result of the coroutine

        Raises:
            BulkheadTimeoutError: If operation times out
        """
        self.metrics.total_requests += 1
        effective_timeout = timeout or self.config.timeout

        async with self.semaphore:
            self.metrics.current_concurrent += 1
            if self.metrics.current_concurrent > self.metrics.max_concurrent_reached:
                self.metrics.max_concurrent_reached = self.metrics.current_concurrent

            try:
                if effective_timeout:
                    result = await asyncio.wait_for(coro, timeout=effective_timeout)
                else:
                    result = await coro
                self.metrics.successful_requests += 1
                self.metrics.last_success_time = datetime.now()
                return result

            except asyncio.TimeoutError:
                self.metrics.timeout_requests += 1
                self._record_failure()
                raise BulkheadTimeoutError(self.name, effective_timeout)

            except Exception:
                self._record_failure()
                raise

            finally:
                self.metrics.current_concurrent -= 1

    def _record_failure(self):
        self.metrics.failed_requests += 1
        self.metrics.last_failure_time = datetime.now()

    def get_metrics(self) -> Dict[str, Any]:
        """Get current metrics as dictionary."""
        return {
            "name": self.name,
            "max_concurrent": self.config.max_concurrent,
            "total_requests": self.metrics.total_requests,
            "successful_requests": self.metrics.successful_requests,
            "failed_requests": self.metrics.failed_requests,
            "timeout_requests": self.metrics.timeout_requests,
            "current_concurrent": self.metrics.current_concurrent,
            "max_concurrent_reached": self.metrics.max_concurrent_reached,
            "failure_rate": (
                self.metrics.failed_requests / self.metrics.total_requests
                if self.metrics.total_requests > 0 else 0
            ),
        }

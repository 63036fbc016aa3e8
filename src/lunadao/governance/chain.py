"""
Timeout-bounded access to the chain reader.

Chain calls run on a worker pool and are abandoned after ``timeout`` seconds.
Timeouts and reader failures surface as ``ExternalUnavailable``; deciding how
to absorb them is left to the caller.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable

from ..errors.exceptions import ExternalUnavailable, create_timeout_error
from .interfaces import ChainReader

logger = logging.getLogger(__name__)


class BoundedChainReader:
    """Wraps a ChainReader so no call blocks longer than ``timeout``."""

    def __init__(self, reader: ChainReader, timeout: float = 5.0, max_workers: int = 8):
        self.reader = reader
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="lunadao-chain"
        )

    def _call(self, operation: str, func: Callable[..., Any], *args) -> Any:
        future = self._executor.submit(func, *args)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError:
            future.cancel()
            raise create_timeout_error("chain_reader", operation, self.timeout) from None
        except ExternalUnavailable:
            raise
        except Exception as e:
            raise ExternalUnavailable(
                f"chain_reader operation '{operation}' failed: {e}",
                service="chain_reader",
                operation=operation,
                cause=e,
            ) from e

    def get_balance(self, address: str) -> int:
        balance = int(self._call("get_balance", self.reader.get_balance, address))
        if balance < 0:
            raise ExternalUnavailable(
                f"chain_reader returned negative balance for {address}",
                service="chain_reader",
                operation="get_balance",
            )
        return balance

    def get_total_supply(self) -> int:
        return int(self._call("get_total_supply", self.reader.get_total_supply))

    def get_block_height(self) -> int:
        return int(self._call("get_block_height", self.reader.get_block_height))

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait)

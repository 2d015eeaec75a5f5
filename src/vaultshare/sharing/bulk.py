"""BulkCoordinator — apply one operation to many shares with partial success."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from .errors import classify
from .types import BulkFailure, BulkResult

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

logger = logging.getLogger(__name__)


class BulkCoordinator:
    """Runs a per-share operation over a batch.

    Items are independent: each one runs in its own transaction (the
    operation is expected to be a full facade call), a failure never
    undoes an earlier success, and nothing is rolled back at the end.
    Duplicate ids are processed once.  Results keep input order.
    """

    def __init__(self, concurrency: int = 4, max_batch: int = 200) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._concurrency = concurrency
        self._max_batch = max_batch

    async def run(
        self,
        share_ids: Iterable[str],
        operation: Callable[[str], Awaitable[Any]],
    ) -> BulkResult:
        ids = list(dict.fromkeys(share_ids))
        if len(ids) > self._max_batch:
            raise ValueError(f"Bulk batch of {len(ids)} exceeds the limit of {self._max_batch}")
        if not ids:
            return BulkResult()

        semaphore = asyncio.Semaphore(self._concurrency)

        async def _one(share_id: str) -> BulkFailure | None:
            async with semaphore:
                try:
                    await operation(share_id)
                except Exception as exc:
                    classified = classify(exc)
                    logger.debug(
                        "bulk item %s failed: %s", share_id, classified.kind.value, exc_info=True
                    )
                    return BulkFailure(
                        share_id=share_id,
                        error=classified.kind,
                        message=classified.message,
                        retryable=classified.retryable,
                    )
            return None

        outcomes = await asyncio.gather(*(_one(share_id) for share_id in ids))

        result = BulkResult()
        for share_id, failure in zip(ids, outcomes):
            if failure is None:
                result.successful.append(share_id)
            else:
                result.failed.append(failure)
        return result

"""Batch executor: chunking, bounded fan-out, throttled sequential calls.

Three disciplines are used by the stages:
  - settle_all: up to N concurrent calls, every outcome collected, one
    failure never cancels its siblings (parse, score)
  - throttled: one call at a time with a fixed pause between calls (enrich)
  - run_in_batches: fixed-size batches with a checkpoint after each, a
    failing batch is logged and the loop moves on (scrape, parse, save)
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Generic, TypeVar

from src.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class Outcome(Generic[T, R]):
    """Result of one item: either a value or the exception it raised."""

    def __init__(self, item: T, value: R | None = None, error: BaseException | None = None) -> None:
        self.item = item
        self.value = value
        self.error = error

    @property
    def ok(self) -> bool:
        return self.error is None


class BatchReport:
    """Summary of a run_in_batches loop."""

    def __init__(self, total_batches: int) -> None:
        self.total_batches = total_batches
        self.completed: list[int] = []
        self.failed: list[tuple[int, str]] = []

    @property
    def last_error(self) -> str | None:
        return self.failed[-1][1] if self.failed else None


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    if size < 1:
        msg = f"batch size must be >= 1, got {size}"
        raise ValueError(msg)
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def raise_configuration_errors(outcomes: Sequence[Outcome[Any, Any]]) -> None:
    """Re-raise the first ConfigurationError captured by settle_all."""
    for outcome in outcomes:
        if isinstance(outcome.error, ConfigurationError):
            raise outcome.error


async def settle_all(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    concurrency: int = 5,
) -> list[Outcome[T, R]]:
    """Run worker over items with at most ``concurrency`` in flight."""
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def run_one(item: T) -> Outcome[T, R]:
        async with semaphore:
            try:
                return Outcome(item, value=await worker(item))
            except Exception as e:
                logger.warning("Item failed: %s", e, exc_info=True)
                return Outcome(item, error=e)

    return list(await asyncio.gather(*(run_one(item) for item in items)))


async def throttled(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    delay: float,
    stop_when: Callable[[], bool] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> list[Outcome[T, R]]:
    """Call worker sequentially, pausing ``delay`` seconds between calls.

    ``stop_when`` is checked before each item; once it returns True the
    remaining items are left untouched.
    """
    outcomes: list[Outcome[T, R]] = []
    for index, item in enumerate(items):
        if stop_when is not None and stop_when():
            logger.info("Stopping early after %d/%d items", index, len(items))
            break
        if index > 0 and delay > 0:
            await sleep(delay)
        try:
            outcomes.append(Outcome(item, value=await worker(item)))
        except ConfigurationError:
            raise
        except Exception as e:
            logger.warning("Item failed: %s", e, exc_info=True)
            outcomes.append(Outcome(item, error=e))
    return outcomes


async def run_in_batches(
    items: Sequence[T],
    process_batch: Callable[[list[T], int, int], Awaitable[None]],
    *,
    batch_size: int,
    label: str,
) -> BatchReport:
    """Feed items to ``process_batch(batch, number, total)`` batch by batch.

    process_batch is responsible for its own checkpoint write. A batch that
    raises is recorded in the report and skipped; configuration errors
    abort the loop.
    """
    batches = chunked(items, batch_size)
    report = BatchReport(len(batches))
    for number, batch in enumerate(batches, start=1):
        logger.info("%s batch %d/%d (%d items)", label, number, len(batches), len(batch))
        try:
            await process_batch(batch, number, len(batches))
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error("%s batch %d/%d failed: %s", label, number, len(batches), e)
            report.failed.append((number, f"{label} batch {number} failed: {e}"))
            continue
        report.completed.append(number)
    return report

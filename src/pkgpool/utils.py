"""Shared helpers for names and concurrent fan-out."""

import asyncio
import logging
from collections.abc import Awaitable
from collections.abc import Iterable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Names that are made of safe characters but still address another directory.
RESERVED_NAMES = ("", ".", "..")


def is_file_system_safe(text: str) -> bool:
    """Return True if `text` is safe to use as a single path component.

    Only ASCII letters, digits, '-', '_' and '.' are allowed, and the text
    must not be empty, '.' or '..'.

    Examples:
        >>> is_file_system_safe("test-package_1.0")
        True
        >>> is_file_system_safe("../etc")
        False
        >>> is_file_system_safe("..")
        False
    """
    if text in RESERVED_NAMES:
        return False
    return all((c.isascii() and c.isalnum()) or c in "-_." for c in text)


class _Raised:
    """Marks an exception that escaped an awaitable, as opposed to one it returned."""

    __slots__ = ("error",)

    def __init__(self, error: Exception):
        self.error = error


async def gather_bounded(aws: Iterable[Awaitable[T]], limit: int | None = None) -> list[T]:
    """Run awaitables concurrently and wait for all of them.

    Each awaitable gets its own task. Results come back in input order, and an
    exception instance returned by an awaitable is an ordinary result. An
    exception raised by any awaitable is an orchestration fault and is
    re-raised once every task has finished, so no task is left running.

    Args:
        aws: Awaitables to run, one per unit of work
        limit: Maximum number running at once (None = unbounded)

    Returns:
        One result per awaitable
    """
    semaphore = asyncio.Semaphore(limit) if limit else None

    async def run(aw: Awaitable[T]) -> "T | _Raised":
        try:
            if semaphore is None:
                return await aw
            async with semaphore:
                return await aw
        except Exception as e:
            return _Raised(e)

    results = await asyncio.gather(*(run(aw) for aw in aws))
    for result in results:
        if isinstance(result, _Raised):
            logger.error(f"Task failed outside of per-item error handling: {result.error!r}")
            raise result.error
    return results  # type: ignore[return-value]

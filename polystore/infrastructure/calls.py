"""
Driver call boundary.

Every awaitable handed to a database driver goes through `run_backend_call`,
which is the single place driver exceptions are translated into the polystore
taxonomy and where caller cancellation is handled:

- the driver operation runs as its own task, shielded from the caller, so a
  cancelled caller never leaves a half-cancelled driver call behind;
- if the caller is cancelled, the pending operation is drained in the
  background (its result or exception retrieved and discarded) and the
  caller's `CancelledError` propagates, so no decoding runs for it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from polystore.errors import BackendError, DuplicateKeyError
from polystore.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


def _never_duplicate(exc: BaseException) -> bool:
    return False


@dataclass(frozen=True)
class ErrorPolicy:
    """
    How a driver reports failures.

    Attributes
    ----------
    driver_errors : tuple of exception types
        Base exception classes raised by the driver.
    is_duplicate : callable
        Predicate recognising uniqueness violations among those exceptions.
    """

    driver_errors: Tuple[Type[BaseException], ...]
    is_duplicate: Callable[[BaseException], bool] = field(default=_never_duplicate)


def _drain(task: "asyncio.Future[object]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        log.debug("discarded outcome of abandoned backend call", extra={"error": repr(exc)})


async def run_backend_call(operation: str, awaitable: Awaitable[T], policy: ErrorPolicy) -> T:
    """
    Await a driver operation, translating driver errors.

    Parameters
    ----------
    operation : str
        Name reported in `BackendError.operation` (e.g. ``"insert"``).
    awaitable : Awaitable
        The driver coroutine.
    policy : ErrorPolicy
        The driver's exception classes and duplicate-key predicate.

    Raises
    ------
    DuplicateKeyError
        If the driver reports a uniqueness violation.
    BackendError
        For any other driver failure.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        if not task.done():
            task.add_done_callback(_drain)
        raise
    except policy.driver_errors as exc:
        if policy.is_duplicate(exc):
            raise DuplicateKeyError(operation, str(exc)) from exc
        raise BackendError(operation, str(exc)) from exc


__all__ = ["ErrorPolicy", "run_backend_call"]

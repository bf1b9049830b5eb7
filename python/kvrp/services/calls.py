"""Backend call wrappers for the service layer.

Services never let BackendError or a timeout escape: reads surface as
LoadFailure and writes as MutationFailure, both with the service's own
notice text.
"""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from kvrp.backend.client import BackendError
from kvrp.config import get_settings
from kvrp.errors import LoadFailure, MutationFailure
from kvrp.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def _timeout(timeout_s: float | None) -> float:
    return timeout_s if timeout_s is not None else get_settings().request_timeout_s


async def fetch(
    call: Awaitable[T],
    *,
    operation: str,
    notice: str | None = None,
    timeout_s: float | None = None,
) -> T:
    """Await a backend read.

    Raises:
        LoadFailure: If the read fails or times out.
    """
    try:
        return await asyncio.wait_for(call, timeout=_timeout(timeout_s))
    except BackendError as e:
        logger.warning("service_read_failed", operation=operation, error_code=e.code)
        raise LoadFailure(notice) from e
    except asyncio.TimeoutError as e:
        logger.warning("service_read_failed", operation=operation, error_code="E_TIMEOUT")
        raise LoadFailure(notice) from e


async def commit(
    call: Awaitable[T],
    *,
    operation: str,
    notice: str | None = None,
    timeout_s: float | None = None,
) -> T:
    """Await a backend write.

    Raises:
        MutationFailure: If the write fails or times out.
    """
    try:
        return await asyncio.wait_for(call, timeout=_timeout(timeout_s))
    except BackendError as e:
        logger.warning("service_write_failed", operation=operation, error_code=e.code)
        raise MutationFailure(notice) from e
    except asyncio.TimeoutError as e:
        logger.warning("service_write_failed", operation=operation, error_code="E_TIMEOUT")
        raise MutationFailure(notice) from e

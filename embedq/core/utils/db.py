# embedq/core/utils/db.py
"""Classification of transient database errors and linear connect retry."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from psycopg import InterfaceError, OperationalError
from sqlalchemy.exc import DBAPIError, OperationalError as SAOperationalError

from embedq.core.logging import get_logger

logger = get_logger('db')


def is_dbapi_disconnect(exc: DBAPIError) -> bool:
    """Check whether a SQLAlchemy DBAPIError represents a connection disconnect."""
    connection_invalidated = bool(getattr(exc, 'connection_invalidated', False))
    is_disconnect = bool(getattr(exc, 'is_disconnect', False))
    return connection_invalidated or is_disconnect


def is_retryable_connection_error(exc: BaseException) -> bool:
    """Check whether an exception is a transient connection error worth retrying."""
    match exc:
        case OperationalError() | InterfaceError() | SAOperationalError():
            return True
        case DBAPIError() as db_exc if is_dbapi_disconnect(db_exc):
            return True
        case _:
            return False


async def retry_connect(
    probe: Callable[[], Awaitable[None]],
    *,
    max_attempts: int,
    delay_seconds: float,
) -> None:
    """Run ``probe`` until it succeeds, sleeping ``delay_seconds * attempt`` between tries.

    Only transient connection errors are retried; anything else, or the last
    transient error once ``max_attempts`` is reached, propagates.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            await probe()
            return
        except Exception as exc:
            if not is_retryable_connection_error(exc) or attempt >= max_attempts:
                raise
            delay = delay_seconds * attempt
            logger.warning(
                f'Database not reachable (attempt {attempt}/{max_attempts}): {exc}; '
                f'retrying in {delay:.1f}s'
            )
            await asyncio.sleep(delay)

"""Decorators for the MCP OAuth broker."""

import functools
import traceback
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import ParamSpec, TypeVar

from .logging import logger, request_id_ctx

P = ParamSpec("P")
R = TypeVar("R")


def track_request(
    endpoint_name: str,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Decorator to track broker endpoint requests with timing and error logging.

    Args:
        endpoint_name: Name of the endpoint being tracked

    Returns:
        Decorated handler with request tracking
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            request_id = str(uuid.uuid4())[:8]
            start_time = datetime.now(UTC).timestamp()

            # Store request_id in ContextVar for automatic logging
            token = request_id_ctx.set(request_id)

            logger.info("Starting %s request", endpoint_name)

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                duration = datetime.now(UTC).timestamp() - start_time
                logger.error(
                    "Failed %s after %.2fs: %s", endpoint_name, duration, str(e)
                )
                logger.debug("Traceback: %s", traceback.format_exc())
                raise
            else:
                duration = datetime.now(UTC).timestamp() - start_time
                logger.info("Completed %s in %.2fs", endpoint_name, duration)
            finally:
                request_id_ctx.reset(token)

            return result

        return wrapper

    return decorator

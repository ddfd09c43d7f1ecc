# clerk/core/utils.py
import asyncio
import logging
import discord
from typing import Coroutine, Any, TypeVar, Callable

logger = logging.getLogger(__name__)

T = TypeVar('T')

async def retry_on_transient_error(
    coro_func: Callable[[], Coroutine[Any, Any, T]],
    operation_name: str,
    retry_on: tuple[type[BaseException], ...] = (discord.errors.DiscordServerError,),
    max_retries: int = 3,
    initial_delay: float = 2.0,
    backoff_factor: float = 2.0
) -> T:
    """
    Retry a coroutine with exponential backoff while it raises one of `retry_on`.
    A factory is passed instead of a coroutine so each attempt gets a fresh one.

    :param coro_func: returns the coroutine to run, e.g. ``lambda: channel.send(content)``
    :param operation_name: human readable name used in the logs
    :param retry_on: exception types considered transient
    :param max_retries: total number of attempts
    :param initial_delay: seconds to wait before the second attempt
    :param backoff_factor: multiplier applied to the delay after each failure
    :return: the coroutine's result
    :raises: the last exception once every attempt has failed
    """
    delay = initial_delay
    logger.debug(f"Running '{operation_name}' with up to {max_retries} attempts.")

    for i in range(max_retries):
        try:
            result = await coro_func()
            logger.debug(f"'{operation_name}' succeeded.")
            return result
        except retry_on as e:
            if i == max_retries - 1:
                logger.error(
                    f"'{operation_name}' failed after {max_retries} attempts. Last error: {e}",
                    exc_info=True
                )
                raise

            logger.warning(
                f"'{operation_name}' failed (attempt {i + 1}/{max_retries}): {e}. Retrying in {delay:.2f}s..."
            )
            await asyncio.sleep(delay)
            delay *= backoff_factor

    raise RuntimeError(f"Retry loop for '{operation_name}' exited unexpectedly.")


class KeyedLocks:
    """One asyncio.Lock per key, created on first use."""

    def __init__(self):
        self._locks: dict[Any, asyncio.Lock] = {}

    def __call__(self, key) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __contains__(self, key) -> bool:
        return key in self._locks

    def discard(self, key):
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

R = TypeVar('R')


class AsyncResourceCache:
    """
    Process-wide cache for read-only reference data.

    The first caller for a key starts the load; concurrent callers for the
    same key await that one in-flight task instead of fetching again. Once a
    value is loaded it is returned for every later call and can also be read
    synchronously through ``peek``. A failed load is not cached, so the next
    call retries.
    """

    def __init__(self) -> None:
        self._values: Dict[str, Any] = {}
        self._pending: Dict[str, "asyncio.Task[Any]"] = {}

    async def get(self, key: str, factory: Callable[[], Awaitable[R]]) -> R:
        if key in self._values:
            logger.debug(f"Cache hit for {key}")
            return self._values[key]

        task = self._pending.get(key)
        if task is None:
            if not callable(factory):
                raise TypeError("factory must be a callable returning an awaitable.")
            logger.debug(f"Cache miss for {key}, starting load")
            task = asyncio.ensure_future(self._load(key, factory))
            self._pending[key] = task
        else:
            logger.debug(f"Joining in-flight load for {key}")

        # Shield so one cancelled caller does not cancel the shared load
        return await asyncio.shield(task)

    async def _load(self, key: str, factory: Callable[[], Awaitable[R]]) -> R:
        try:
            result = factory()
            if inspect.isawaitable(result):
                result = await result
            self._values[key] = result
            return result
        except Exception as e:
            logger.warning(f"Load failed for {key}: {e}")
            raise
        finally:
            self._pending.pop(key, None)

    def peek(self, key: str) -> Optional[Any]:
        """Returns the cached value for ``key`` without loading, or None."""
        return self._values.get(key)

    def invalidate(self, key: str) -> bool:
        """Drops one cached value. Returns True if something was removed."""
        return self._values.pop(key, None) is not None

    def clear(self) -> None:
        logger.info(f"Clearing {len(self._values)} cached resources")
        self._values.clear()
        # In-flight loads still populate the cache when they finish

    def stats(self) -> Dict[str, Any]:
        return {
            "cached": len(self._values),
            "pending": len(self._pending),
            "keys": sorted(self._values),
        }


# Shared instance used by the catalog and reference data loaders
resource_cache = AsyncResourceCache()

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

from cachetools import LRUCache

from ciresults.config import CacheSizes

T = TypeVar("T")

_MISS = object()


class LookupCache(Protocol):
    def get(self, key: Hashable, default: Any = None) -> Any: ...

    def __setitem__(self, key: Hashable, value: Any) -> None: ...

    def __len__(self) -> int: ...


class NullCache:
    """Never remembers anything; the uncached baseline."""

    def get(self, key: Hashable, default: Any = None) -> Any:
        return default

    def __setitem__(self, key: Hashable, value: Any) -> None:
        return None

    def __len__(self) -> int:
        return 0


@dataclass(slots=True)
class StoreCaches:
    jobs: LookupCache
    builds: LookupCache
    tests: LookupCache

    @classmethod
    def lru(cls, sizes: CacheSizes | None = None) -> "StoreCaches":
        sizes = sizes or CacheSizes()
        return cls(
            jobs=LRUCache(maxsize=sizes.jobs),
            builds=LRUCache(maxsize=sizes.builds),
            tests=LRUCache(maxsize=sizes.tests),
        )

    @classmethod
    def disabled(cls) -> "StoreCaches":
        return cls(jobs=NullCache(), builds=NullCache(), tests=NullCache())


def cached_lookup(
    cache_name: str,
    key: Callable[..., Hashable] | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Serve a store lookup from ``self.caches.<cache_name>`` when possible.

    Only successful results are cached; exceptions (e.g. a miss) pass through
    and are asked again next time. ``key`` maps the call arguments to the
    cache key and defaults to the first argument.
    """

    def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(fn)
        async def wrapper(self: Any, *args: Any) -> T:
            cache: LookupCache = getattr(self.caches, cache_name)
            cache_key = key(*args) if key is not None else args[0]
            hit = cache.get(cache_key, _MISS)
            if hit is not _MISS:
                return hit
            value = await fn(self, *args)
            cache[cache_key] = value
            return value

        return wrapper

    return decorator

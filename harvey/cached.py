from __future__ import annotations

import functools
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from .cache import CacheStore

T = TypeVar("T")


class CachedAccessor(Generic[T]):
    """Memoizes an async read through a :class:`CacheStore`.

    ``key_fn`` receives the same arguments as ``fn``. Concurrent misses for
    the same key are not coalesced; each one awaits ``fn``. List results are
    handed out as shallow copies; the items themselves are shared and must
    be treated as read-only.
    """

    def __init__(
        self,
        cache: CacheStore,
        fn: Callable[..., Awaitable[T]],
        key_fn: Callable[..., str],
        ttl: Optional[float] = None,
    ) -> None:
        self.cache = cache
        self.fn = fn
        self.key_fn = key_fn
        self.ttl = ttl
        functools.update_wrapper(self, fn)

    async def __call__(self, *args: Any) -> T:
        key = self.key_fn(*args)
        cached_value = self.cache.get(key)
        if cached_value is not None:
            return _detached(cached_value)
        result = await self.fn(*args)
        self.cache.set(key, result, self.ttl)
        return _detached(result)

    def key_for(self, *args: Any) -> str:
        return self.key_fn(*args)

    def invalidate(self, *args: Any) -> None:
        self.cache.invalidate(self.key_fn(*args))


def cached(
    cache: CacheStore,
    key_fn: Callable[..., str],
    ttl: Optional[float] = None,
) -> Callable[[Callable[..., Awaitable[T]]], CachedAccessor[T]]:
    def wrap(fn: Callable[..., Awaitable[T]]) -> CachedAccessor[T]:
        return CachedAccessor(cache, fn, key_fn, ttl)

    return wrap


def _detached(value: Any) -> Any:
    if isinstance(value, list):
        return list(value)
    return value

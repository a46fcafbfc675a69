import asyncio
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from functools import wraps


def lru_acache(maxsize: int = 128):
    """
    Caches an async function's return value, per event loop.

    Clients like HTTP sessions are bound to the loop that created them, so the running loop is part of the key. When `maxsize` is reached, the least recently used value is evicted.
    """

    def decorator(func: Callable[..., Awaitable]):
        values: OrderedDict[tuple, object] = OrderedDict()

        @wraps(func)
        async def wrapper(*args, **kwargs):
            key = (
                id(asyncio.get_running_loop()),
                args,
                frozenset(kwargs.items()),
            )

            # Hit, mark as most recently used
            if key in values:
                values.move_to_end(key)
                return values[key]

            # Miss, compute and store
            value = await func(*args, **kwargs)
            values[key] = value

            # Evict the oldest entry
            if len(values) > maxsize:
                values.popitem(last=False)

            return value

        return wrapper

    return decorator

# browsergate/utils/aio.py
"""Helpers for calling user-supplied callables that may or may not be async."""

from __future__ import annotations

import inspect
from typing import Any, Callable


async def call_maybe_async(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Call `fn` and await the result if it is awaitable.

    Driver callbacks are injected as plain callables; some are coroutine
    functions, some return futures, some are synchronous.
    """
    result = fn(*args, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result

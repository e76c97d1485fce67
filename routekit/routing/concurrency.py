"""Uniform invocation of sync and async chain callables."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
import functools
import inspect

from starlette.concurrency import run_in_threadpool


def is_async_callable(obj: Any) -> bool:
    while isinstance(obj, functools.partial):
        obj = obj.func
    return inspect.iscoroutinefunction(obj) or inspect.iscoroutinefunction(getattr(obj, "__call__", None))


async def call_step(fn: Callable[..., Any], *args: Any) -> Any:
    """Await async callables; run sync ones in the threadpool like FastAPI endpoints."""
    if is_async_callable(fn):
        result = await fn(*args)
    else:
        result = await run_in_threadpool(fn, *args)
    if inspect.isawaitable(result):
        result = await result
    return result

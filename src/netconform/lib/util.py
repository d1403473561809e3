import asyncio
import inspect


async def call(f, *args, **kwargs):
    if inspect.iscoroutinefunction(f):
        return await f(*args, **kwargs)
    ret = f(*args, **kwargs)
    # lambdas and partials wrapping coroutine functions
    if inspect.isawaitable(ret):
        return await ret
    return ret


async def call_in_thread(f, *args, **kwargs):
    """Like call(), but a plain function runs in a worker thread so that it cannot block the event loop."""
    if inspect.iscoroutinefunction(f):
        return await f(*args, **kwargs)
    ret = await asyncio.to_thread(f, *args, **kwargs)
    if inspect.isawaitable(ret):
        return await ret
    return ret


def to_ns(seconds):
    return int(seconds * 1000 * 1000 * 1000)

import time
import asyncio
import functools
import logging

logger = logging.getLogger("vitaclube.timing")

SLOW_THRESHOLD_MS = 1000.0


def _report(name: str, elapsed_ms: float) -> None:
    if elapsed_ms >= SLOW_THRESHOLD_MS:
        logger.warning(f"[timing] {name} took {elapsed_ms:.2f} ms (slow)")
    else:
        logger.info(f"[timing] {name} took {elapsed_ms:.2f} ms")


def timeit(label: str = ""):
    """
    Decorator to log execution time for a function (sync or async).

    Usage:
        @timeit()
        def foo():
            ...

        @timeit("request_withdrawal")
        async def bar():
            await ...
    """

    def _decorate(func):
        name = label or getattr(func, "__qualname__", getattr(func, "__name__", "function"))

        if asyncio.iscoroutinefunction(func):

            @functools.wraps(func)
            async def _aw(*args, **kwargs):
                start = time.perf_counter()
                try:
                    return await func(*args, **kwargs)
                finally:
                    _report(name, (time.perf_counter() - start) * 1000.0)

            return _aw

        @functools.wraps(func)
        def _w(*args, **kwargs):
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                _report(name, (time.perf_counter() - start) * 1000.0)

        return _w

    return _decorate

"""
Copyright 2025 AUMOVIO. All rights reserved.
"""
import functools
import time
import logging


logger = logging.getLogger(__name__)


def timeit(func):
    """Decorator to measure execution time of a function and log it."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        result = func(*args, **kwargs)
        end = time.perf_counter()
        logger.debug(f"[TIMEIT] {func.__qualname__} executed in {end - start:.4f} seconds")
        return result
    return wrapper


class Stopwatch:
    """Context manager keeping the wall time of its block in `elapsed` (seconds)."""

    def __init__(self):
        self.elapsed = 0.0
        self._start = None

    def __enter__(self):
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.elapsed = time.perf_counter() - self._start
        return False

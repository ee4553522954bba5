"""
Performance monitoring utilities for Score Predictor
"""

import functools
import time

from flask import current_app, has_app_context

from predictor.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_SLOW_THRESHOLD = 1.0


def _slow_threshold():
    if has_app_context():
        return current_app.config.get("SLOW_FUNCTION_THRESHOLD", DEFAULT_SLOW_THRESHOLD)
    return DEFAULT_SLOW_THRESHOLD


def timer(func):
    """
    Decorator to time function execution

    Args:
        func: Function to time

    Returns:
        Wrapped function with timing
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()
        try:
            result = func(*args, **kwargs)
            execution_time = time.time() - start_time

            threshold = _slow_threshold()
            if execution_time > threshold:
                logger.warning(
                    f"Slow function {func.__qualname__} took {execution_time:.2f}s "
                    f"(threshold: {threshold}s)"
                )
            else:
                logger.debug(
                    f"Function {func.__qualname__} executed in {execution_time:.2f}s"
                )

            return result

        except Exception as e:
            execution_time = time.time() - start_time
            logger.error(
                f"Function {func.__qualname__} failed after {execution_time:.2f}s: {str(e)}"
            )
            raise

    return wrapper


class Stopwatch:
    """Context manager measuring elapsed milliseconds of a block"""

    def __init__(self):
        self.start_time = None
        self.end_time = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_time = time.perf_counter()
        return False

    @property
    def elapsed_ms(self):
        if self.start_time is None:
            return 0
        end = self.end_time if self.end_time is not None else time.perf_counter()
        return int((end - self.start_time) * 1000)

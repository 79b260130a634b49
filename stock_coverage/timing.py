"""
Performance timing utilities for batch coverage runs.
"""
import time
import logging
from functools import wraps

logger = logging.getLogger(__name__)


def _format_duration(duration: float) -> str:
    if duration < 1:
        return f"{duration*1000:.0f}ms"
    elif duration < 60:
        return f"{duration:.2f}s"
    return f"{duration/60:.1f}min"


def timed_operation(operation_name):
    """
    Decorator to time function execution and log results.

    Usage:
        @timed_operation("Stock Coverage CLI Run")
        def cmd_calculate(args):
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = time.perf_counter() - start
                logger.error(f"[TIMING] {operation_name}: FAILED after {duration:.2f}s - {e}")
                raise
            logger.info(f"[TIMING] {operation_name}: {_format_duration(time.perf_counter() - start)}")
            return result
        return wrapper
    return decorator


class Timer:
    """
    Context manager measuring elapsed wall time of a code block.

    Usage:
        with Timer("Chunk 1") as timer:
            ...
        timer.elapsed_ms
    """
    def __init__(self, operation_name):
        self.operation_name = operation_name
        self.start = None
        self.elapsed = 0.0

    @property
    def elapsed_ms(self) -> float:
        return self.elapsed * 1000

    def __enter__(self):
        self.start = time.perf_counter()
        logger.debug(f"[TIMING] {self.operation_name}: Starting...")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.perf_counter() - self.start
        if exc_type is None:
            logger.debug(f"[TIMING] {self.operation_name}: {_format_duration(self.elapsed)}")
        else:
            logger.error(f"[TIMING] {self.operation_name}: FAILED after {self.elapsed:.2f}s")
        return False

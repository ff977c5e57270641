"""
Stage logging for takeoff runs

Every pipeline stage logs its start and end under the same stage name the
run diagnostics use ("legend", "classification", "matching", "report"),
and adds its wall time to the run context so the report carries per-stage timings.
"""

import time
import logging
from typing import Dict, Any, Optional, Callable, TypeVar
from contextlib import contextmanager
from functools import wraps

from services.pipeline_context import RunContext

logger = logging.getLogger(__name__)

T = TypeVar('T')


class StageTimer:
    """Time one unit of work inside a stage and add it to the run's stage total"""

    def __init__(self, stage: str, label: str, context: Optional[RunContext] = None,
                 logger: Optional[logging.Logger] = None):
        self.stage = stage
        self.label = label
        self.context = context
        self.logger = logger or logging.getLogger(__name__)
        self.start_time = None
        self.duration = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.time() - self.start_time
        if self.context is not None:
            self.context.record_timing(self.stage, self.duration)
        self.logger.info(f"[{self.stage}] {self.label} completed in {self.duration:.2f}s")


@contextmanager
def log_stage(stage: str, details: Dict[str, Any], context: Optional[RunContext] = None,
              logger: Optional[logging.Logger] = None):
    """
    Log a pipeline stage with its plan details and record its duration.

    A failing stage is logged with the error and the duration it ran for, then re-raised.

    Usage:
        with log_stage("legend", {'location': "bottom-right"}, context):
            segmentation = segmenter.segment(plan)
    """
    logger = logger or logging.getLogger(__name__)
    source_file = context.source_file if context is not None else None
    start_time = time.time()

    logger.info(f"[{stage}] started", extra={
        'stage': stage,
        'details': details,
        'source_file': source_file,
        'status': 'started'
    })

    try:
        yield
    except Exception as e:
        duration = time.time() - start_time
        logger.error(f"[{stage}] failed after {duration:.2f}s: {e}", extra={
            'stage': stage,
            'details': details,
            'source_file': source_file,
            'status': 'failed',
            'duration_seconds': duration,
            'error_type': type(e).__name__
        })
        raise
    finally:
        if context is not None:
            context.record_timing(stage, time.time() - start_time)

    logger.info(f"[{stage}] completed in {time.time() - start_time:.2f}s", extra={
        'stage': stage,
        'details': details,
        'source_file': source_file,
        'status': 'completed'
    })


def timed_stage(stage: str):
    """
    Decorator logging the wall time of a whole-stage method.

    Usage:
        @timed_stage("report")
        def save(self, report, plan, stem):
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(f"[{stage}] {func.__name__} failed after {time.time() - start_time:.2f}s: {e}")
                raise
            logger.info(f"[{stage}] {func.__name__} completed in {time.time() - start_time:.2f}s")
            return result

        return wrapper
    return decorator

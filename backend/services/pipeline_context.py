"""
Pipeline Context - Per-run state and diagnostics collection
Locks the scale once calibrated and gathers warnings from every stage and worker thread
"""

import logging
from typing import Optional, List, Dict, Any, Tuple
from threading import Lock

from services.error_types import TakeoffError, CriticalError
from services.pipeline_contracts import Diagnostic, DiagnosticLevel, ScaleInfo

logger = logging.getLogger(__name__)


class RunDiagnostics:
    """
    Thread-safe collector for run-level diagnostics.
    Every recoverable failure ends up here and is returned with the report.
    """

    def __init__(self):
        self._entries: List[Diagnostic] = []
        self._lock = Lock()

    def add(self, level: DiagnosticLevel, stage: str, message: str,
            details: Optional[Dict[str, Any]] = None) -> Diagnostic:
        entry = Diagnostic(level=level, stage=stage, message=message, details=details or {})
        with self._lock:
            self._entries.append(entry)
        return entry

    def info(self, stage: str, message: str, **details) -> Diagnostic:
        return self.add(DiagnosticLevel.INFO, stage, message, details)

    def warning(self, stage: str, message: str, **details) -> Diagnostic:
        logger.warning(f"[{stage}] {message}")
        return self.add(DiagnosticLevel.WARNING, stage, message, details)

    def error(self, stage: str, message: str, **details) -> Diagnostic:
        logger.error(f"[{stage}] {message}")
        return self.add(DiagnosticLevel.ERROR, stage, message, details)

    def record_exception(self, stage: str, error: Exception, **details) -> Diagnostic:
        """Record an exception as warning (recoverable) or error (critical)"""
        merged = dict(details)
        merged['error_type'] = type(error).__name__
        if isinstance(error, TakeoffError):
            merged.update(error.details)
            message = error.message
        else:
            message = str(error) or type(error).__name__
        if isinstance(error, CriticalError):
            return self.error(stage, message, **merged)
        return self.warning(stage, message, **merged)

    @property
    def entries(self) -> List[Diagnostic]:
        with self._lock:
            return list(self._entries)

    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.entries if d.level != DiagnosticLevel.INFO]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RunContext:
    """
    State shared by the stages of one pipeline run.
    The scale and legend bounds are locked once set.
    """

    def __init__(self, source_file: Optional[str] = None):
        self.source_file = source_file
        self.diagnostics = RunDiagnostics()
        self._scale: Optional[ScaleInfo] = None
        self._legend_bounds: Optional[Tuple[int, int, int, int]] = None
        self._timings: Dict[str, float] = {}
        self._lock = Lock()

    def set_scale(self, scale: ScaleInfo) -> None:
        with self._lock:
            if self._scale is not None and self._scale != scale:
                raise ValueError(
                    f"Scale already locked to {self._scale.notation}, attempted {scale.notation}"
                )
            self._scale = scale
            logger.info(f"[CONTEXT] Locked scale: {scale.notation} "
                        f"({scale.pixels_per_meter:.2f} px/m) from {scale.source}")

    @property
    def scale(self) -> ScaleInfo:
        with self._lock:
            if self._scale is None:
                raise ValueError("Scale not set in context! Call set_scale() first.")
            return self._scale

    def set_legend_bounds(self, bounds: Tuple[int, int, int, int]) -> None:
        with self._lock:
            self._legend_bounds = bounds
            logger.info(f"[CONTEXT] Legend bounds: {bounds}")

    @property
    def legend_bounds(self) -> Optional[Tuple[int, int, int, int]]:
        with self._lock:
            return self._legend_bounds

    def record_timing(self, stage: str, seconds: float) -> None:
        """Add wall time to a stage total; repeated stages (one search per pattern) accumulate"""
        with self._lock:
            self._timings[stage] = self._timings.get(stage, 0.0) + seconds

    @property
    def timings(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._timings)

    def summary(self) -> dict:
        with self._lock:
            return {
                'source_file': self.source_file,
                'scale': self._scale.notation if self._scale else None,
                'legend_bounds': self._legend_bounds,
                'diagnostics': len(self.diagnostics),
                'stages': sorted(self._timings),
            }

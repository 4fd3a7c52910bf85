"""Iterative driver around the forward-additive alignment engine.

Runs single Gauss-Newton steps until the parameter update becomes small,
the iteration budget is exhausted, the alignment turns out to be
degenerate or the caller cancels.
"""

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

import numpy as np

from imagealign.core.forward_additive import (
    AlignForwardAdditive, DegenerateAlignmentError,
)
from imagealign.core.image_ops import BorderMode
from imagealign.core.warp import Warp, WarpType, create_warp
from imagealign.utils.helpers import setup_logger

logger = setup_logger(__name__)


# ======================================================================
# Enums & Data Classes
# ======================================================================

class AlignmentStatus(Enum):
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    DEGENERATE = "degenerate"
    CANCELLED = "cancelled"


@dataclass
class AlignmentParameters:
    """Configuration for iterative alignment."""
    warp_type: WarpType = WarpType.TRANSLATION
    max_iterations: int = 50
    epsilon: float = 1e-3               # stop when |delta| < epsilon
    border_mode: BorderMode = BorderMode.REPLICATE
    max_condition: float = 1e14         # Hessian condition number limit

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.epsilon < 0:
            raise ValueError("epsilon must not be negative")
        if self.max_condition <= 1:
            raise ValueError("max_condition must be greater than 1")

    def to_dict(self) -> dict:
        return {
            'warp_type': self.warp_type.value,
            'max_iterations': self.max_iterations,
            'epsilon': self.epsilon,
            'border_mode': self.border_mode.value,
            'max_condition': self.max_condition,
        }

    @classmethod
    def from_dict(cls, d: dict) -> 'AlignmentParameters':
        return cls(
            warp_type=WarpType(d.get('warp_type', 'translation')),
            max_iterations=int(d.get('max_iterations', 50)),
            epsilon=float(d.get('epsilon', 1e-3)),
            border_mode=BorderMode(d.get('border_mode', 'replicate')),
            max_condition=float(d.get('max_condition', 1e14)),
        )


@dataclass
class AlignmentResult:
    """Result of an iterative alignment."""
    parameters: np.ndarray = field(repr=False)
    transform_matrix: np.ndarray = field(repr=False)   # 3x3
    warp_type: WarpType = WarpType.TRANSLATION
    status: AlignmentStatus = AlignmentStatus.MAX_ITERATIONS
    n_iterations: int = 0
    errors: List[float] = field(default_factory=list, repr=False)
    final_error: float = 0.0            # mean signed error of the last step
    delta_norm: float = float("inf")    # norm of the last parameter update
    computation_time_s: float = 0.0

    @property
    def converged(self) -> bool:
        return self.status == AlignmentStatus.CONVERGED

    def to_warp(self) -> Warp:
        return create_warp(self.warp_type, self.parameters)

    def to_dict(self) -> dict:
        return {
            'parameters': np.asarray(self.parameters).tolist(),
            'transform_matrix': np.asarray(self.transform_matrix).tolist(),
            'warp_type': self.warp_type.value,
            'status': self.status.value,
            'n_iterations': self.n_iterations,
            'errors': list(self.errors),
            'final_error': self.final_error,
            'delta_norm': self.delta_norm,
            'computation_time_s': self.computation_time_s,
        }

    @classmethod
    def from_dict(cls, d: dict) -> 'AlignmentResult':
        return cls(
            parameters=np.array(d['parameters'], dtype=np.float64),
            transform_matrix=np.array(d.get('transform_matrix', np.eye(3).tolist()),
                                      dtype=np.float64),
            warp_type=WarpType(d.get('warp_type', 'translation')),
            status=AlignmentStatus(d.get('status', 'max_iterations')),
            n_iterations=d.get('n_iterations', 0),
            errors=list(d.get('errors', [])),
            final_error=d.get('final_error', 0.0),
            delta_norm=d.get('delta_norm', float("inf")),
            computation_time_s=d.get('computation_time_s', 0.0),
        )


# ======================================================================
# Alignment driver
# ======================================================================

class ImageAligner:
    """Iterate forward-additive steps until convergence.

    Usage::

        aligner = ImageAligner(AlignmentParameters(warp_type=WarpType.EUCLIDEAN))
        result = aligner.run(template, target, initial_parameters=[30, 30, 0])
        if result.converged:
            print(result.parameters)
    """

    def __init__(self, params: AlignmentParameters = None):
        self.params = params or AlignmentParameters()
        self._progress_callback: Optional[Callable] = None
        self._cancelled = False
        self._lock = threading.Lock()

    def set_progress_callback(self, callback: Callable):
        """Set callback: callback(percent: int, message: str)"""
        self._progress_callback = callback

    def cancel(self):
        """Request cancellation; honoured before the next iteration."""
        with self._lock:
            self._cancelled = True

    def _report(self, percent, message=""):
        with self._lock:
            cb = self._progress_callback
        if cb:
            cb(int(percent), message)

    def _is_cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def run(self, template: np.ndarray, target: np.ndarray,
            warp: Optional[Warp] = None,
            initial_parameters: Optional[Sequence[float]] = None
            ) -> AlignmentResult:
        """Align *template* with *target*.

        Parameters
        ----------
        template : (h, w) single channel template
        target : (H, W) single channel target
        warp : optional warp to refine in place; created from
            ``params.warp_type`` when omitted
        initial_parameters : optional starting parameters for the warp

        Returns
        -------
        AlignmentResult
        """
        with self._lock:
            self._cancelled = False
        t0 = time.time()

        if warp is None:
            warp = create_warp(self.params.warp_type)
        if initial_parameters is not None:
            warp.set_parameters(initial_parameters)

        engine = AlignForwardAdditive(border_mode=self.params.border_mode,
                                      max_condition=self.params.max_condition)
        engine.prepare(template, target)

        errors = []
        status = AlignmentStatus.MAX_ITERATIONS
        delta_norm = float("inf")
        n_iter = 0

        self._report(0, "Allineamento in corso...")

        for i in range(self.params.max_iterations):
            if self._is_cancelled():
                status = AlignmentStatus.CANCELLED
                break
            try:
                err = engine.align(warp)
            except DegenerateAlignmentError as e:
                logger.warning(f"Degenerate alignment at iteration {i + 1}: {e}")
                status = AlignmentStatus.DEGENERATE
                break

            n_iter = i + 1
            errors.append(err)
            delta_norm = float(np.linalg.norm(engine.last_delta))

            self._report((n_iter / self.params.max_iterations) * 100,
                         f"Iterazione {n_iter}: errore medio {err:.4f}")

            if delta_norm < self.params.epsilon:
                status = AlignmentStatus.CONVERGED
                break

        result = AlignmentResult(
            parameters=warp.get_parameters(),
            transform_matrix=warp.matrix(),
            warp_type=warp.WARP_TYPE,
            status=status,
            n_iterations=n_iter,
            errors=errors,
            final_error=errors[-1] if errors else 0.0,
            delta_norm=delta_norm,
            computation_time_s=time.time() - t0,
        )

        self._report(100, "Allineamento completato")
        logger.info(
            f"Alignment {result.status.value} after {result.n_iterations} "
            f"iterations in {result.computation_time_s:.2f}s "
            f"({result.warp_type.value}): |delta|={result.delta_norm:.3g}, "
            f"mean error={result.final_error:.4f}"
        )
        return result

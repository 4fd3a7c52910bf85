"""Parametric 2D warps used by the alignment engine.

Every warp kind holds a fixed-length parameter vector whose all-zero value
is the identity transform, maps points forward, and exposes its Jacobian
with respect to the parameters. The alignment engine is written once
against the :class:`Warp` interface.

Warp kinds and parameter order:
    Translation  (tx, ty)
    Euclidean    (tx, ty, theta)
    Similarity   (tx, ty, a, b)
    Affine       (tx, ty, a, b, c, d)
    Homography   (h00 - 1, h01, h02, h10, h11 - 1, h12, h20, h21)
"""

import abc
from enum import Enum
from typing import Optional, Sequence, Tuple

import numpy as np


class WarpType(Enum):
    TRANSLATION = "translation"
    EUCLIDEAN = "euclidean"
    SIMILARITY = "similarity"
    AFFINE = "affine"
    HOMOGRAPHY = "homography"


class Warp(abc.ABC):
    """Base class of all warp kinds.

    Subclasses set ``N_PARAMETERS`` and ``WARP_TYPE`` and implement
    :meth:`apply_grid` and :meth:`jacobian_grid`. The single-point
    :meth:`apply` and :meth:`jacobian` are derived from those.
    """

    N_PARAMETERS = 0
    WARP_TYPE: WarpType = None

    def __init__(self, parameters: Optional[Sequence[float]] = None):
        self._params = np.zeros(self.N_PARAMETERS, dtype=np.float64)
        if parameters is not None:
            self.set_parameters(parameters)

    @property
    def n_parameters(self) -> int:
        return self.N_PARAMETERS

    def set_identity(self):
        """Reset the warp to the identity transform."""
        self._params[:] = 0.0

    def get_parameters(self) -> np.ndarray:
        """Return a copy of the current parameter vector."""
        return self._params.copy()

    def set_parameters(self, parameters: Sequence[float]):
        """Replace the parameter vector.

        Raises
        ------
        ValueError
            If ``parameters`` does not hold exactly ``N_PARAMETERS`` values.
        """
        p = np.asarray(parameters, dtype=np.float64).ravel()
        if p.size != self.N_PARAMETERS:
            raise ValueError(
                f"{type(self).__name__} expects {self.N_PARAMETERS} "
                f"parameters, got {p.size}")
        self._params[:] = p

    @property
    def parameters(self) -> np.ndarray:
        return self.get_parameters()

    @parameters.setter
    def parameters(self, value):
        self.set_parameters(value)

    def apply(self, point) -> Tuple[float, float]:
        """Map a single (x, y) point through the warp."""
        x, y = point
        xw, yw = self.apply_grid(np.float64(x), np.float64(y))
        return float(xw), float(yw)

    def __call__(self, point) -> Tuple[float, float]:
        return self.apply(point)

    def jacobian(self, point) -> np.ndarray:
        """Jacobian (2, N) of :meth:`apply` w.r.t. the parameters at *point*."""
        x, y = point
        return self.jacobian_grid(np.float64(x), np.float64(y))

    @abc.abstractmethod
    def apply_grid(self, xs, ys) -> Tuple[np.ndarray, np.ndarray]:
        """Vectorised :meth:`apply` over coordinate arrays of equal shape."""

    @abc.abstractmethod
    def jacobian_grid(self, xs, ys) -> np.ndarray:
        """Vectorised :meth:`jacobian`; returns shape ``xs.shape + (2, N)``."""

    @abc.abstractmethod
    def matrix(self) -> np.ndarray:
        """Equivalent 3x3 homogeneous transform matrix."""

    def copy(self):
        return type(self)(self._params)

    def __repr__(self):
        params = ", ".join(f"{v:.6g}" for v in self._params)
        return f"{type(self).__name__}([{params}])"


class TranslationWarp(Warp):
    """Pure translation: ``p' = p + (tx, ty)``."""

    N_PARAMETERS = 2
    WARP_TYPE = WarpType.TRANSLATION

    def apply_grid(self, xs, ys):
        tx, ty = self._params
        return xs + tx, ys + ty

    def jacobian_grid(self, xs, ys):
        shape = np.shape(xs)
        jac = np.zeros(shape + (2, 2), dtype=np.float64)
        jac[..., 0, 0] = 1.0
        jac[..., 1, 1] = 1.0
        return jac

    def matrix(self):
        tx, ty = self._params
        return np.array([[1.0, 0.0, tx],
                         [0.0, 1.0, ty],
                         [0.0, 0.0, 1.0]])


class EuclideanWarp(Warp):
    """Rotation about the origin followed by translation.

    ``p' = R(theta) p + (tx, ty)`` with ``R = [[cos, -sin], [sin, cos]]``.
    The angle is not wrapped.
    """

    N_PARAMETERS = 3
    WARP_TYPE = WarpType.EUCLIDEAN

    def apply_grid(self, xs, ys):
        tx, ty, theta = self._params
        c, s = np.cos(theta), np.sin(theta)
        return c * xs - s * ys + tx, s * xs + c * ys + ty

    def jacobian_grid(self, xs, ys):
        theta = self._params[2]
        c, s = np.cos(theta), np.sin(theta)
        xs = np.asarray(xs, dtype=np.float64)
        ys = np.asarray(ys, dtype=np.float64)
        jac = np.zeros(xs.shape + (2, 3), dtype=np.float64)
        jac[..., 0, 0] = 1.0
        jac[..., 1, 1] = 1.0
        jac[..., 0, 2] = -s * xs - c * ys
        jac[..., 1, 2] = c * xs - s * ys
        return jac

    def matrix(self):
        tx, ty, theta = self._params
        c, s = np.cos(theta), np.sin(theta)
        return np.array([[c, -s, tx],
                         [s, c, ty],
                         [0.0, 0.0, 1.0]])


class SimilarityWarp(Warp):
    """Rotation, uniform scale and translation, linear in its parameters.

    ``x' = (1 + a) x - b y + tx``, ``y' = b x + (1 + a) y + ty``; the scale
    is ``|1 + a + ib|`` and the angle ``atan2(b, 1 + a)``.
    """

    N_PARAMETERS = 4
    WARP_TYPE = WarpType.SIMILARITY

    def apply_grid(self, xs, ys):
        tx, ty, a, b = self._params
        return (1.0 + a) * xs - b * ys + tx, b * xs + (1.0 + a) * ys + ty

    def jacobian_grid(self, xs, ys):
        xs = np.asarray(xs, dtype=np.float64)
        ys = np.asarray(ys, dtype=np.float64)
        jac = np.zeros(xs.shape + (2, 4), dtype=np.float64)
        jac[..., 0, 0] = 1.0
        jac[..., 1, 1] = 1.0
        jac[..., 0, 2] = xs
        jac[..., 0, 3] = -ys
        jac[..., 1, 2] = ys
        jac[..., 1, 3] = xs
        return jac

    def matrix(self):
        tx, ty, a, b = self._params
        return np.array([[1.0 + a, -b, tx],
                         [b, 1.0 + a, ty],
                         [0.0, 0.0, 1.0]])


class AffineWarp(Warp):
    """General affine warp.

    ``x' = (1 + a) x + b y + tx``, ``y' = c x + (1 + d) y + ty``.
    """

    N_PARAMETERS = 6
    WARP_TYPE = WarpType.AFFINE

    def apply_grid(self, xs, ys):
        tx, ty, a, b, c, d = self._params
        return (1.0 + a) * xs + b * ys + tx, c * xs + (1.0 + d) * ys + ty

    def jacobian_grid(self, xs, ys):
        xs = np.asarray(xs, dtype=np.float64)
        ys = np.asarray(ys, dtype=np.float64)
        jac = np.zeros(xs.shape + (2, 6), dtype=np.float64)
        jac[..., 0, 0] = 1.0
        jac[..., 1, 1] = 1.0
        jac[..., 0, 2] = xs
        jac[..., 0, 3] = ys
        jac[..., 1, 4] = xs
        jac[..., 1, 5] = ys
        return jac

    def matrix(self):
        tx, ty, a, b, c, d = self._params
        return np.array([[1.0 + a, b, tx],
                         [c, 1.0 + d, ty],
                         [0.0, 0.0, 1.0]])


class HomographyWarp(Warp):
    """Projective warp, parameterised as offsets from the identity matrix.

    ``H = [[1 + p0, p1, p2], [p3, 1 + p4, p5], [p6, p7, 1]]``.
    """

    N_PARAMETERS = 8
    WARP_TYPE = WarpType.HOMOGRAPHY

    def matrix(self):
        p = self._params
        return np.array([[1.0 + p[0], p[1], p[2]],
                         [p[3], 1.0 + p[4], p[5]],
                         [p[6], p[7], 1.0]])

    def _project(self, xs, ys):
        H = self.matrix()
        u = H[0, 0] * xs + H[0, 1] * ys + H[0, 2]
        v = H[1, 0] * xs + H[1, 1] * ys + H[1, 2]
        w = H[2, 0] * xs + H[2, 1] * ys + H[2, 2]
        return u / w, v / w, w

    def apply_grid(self, xs, ys):
        xw, yw, _ = self._project(xs, ys)
        return xw, yw

    def jacobian_grid(self, xs, ys):
        xs = np.asarray(xs, dtype=np.float64)
        ys = np.asarray(ys, dtype=np.float64)
        xw, yw, w = self._project(xs, ys)
        inv_w = 1.0 / w
        jac = np.zeros(xs.shape + (2, 8), dtype=np.float64)
        jac[..., 0, 0] = xs * inv_w
        jac[..., 0, 1] = ys * inv_w
        jac[..., 0, 2] = inv_w
        jac[..., 1, 3] = xs * inv_w
        jac[..., 1, 4] = ys * inv_w
        jac[..., 1, 5] = inv_w
        jac[..., 0, 6] = -xs * xw * inv_w
        jac[..., 0, 7] = -ys * xw * inv_w
        jac[..., 1, 6] = -xs * yw * inv_w
        jac[..., 1, 7] = -ys * yw * inv_w
        return jac


WARP_REGISTRY = {
    WarpType.TRANSLATION: TranslationWarp,
    WarpType.EUCLIDEAN: EuclideanWarp,
    WarpType.SIMILARITY: SimilarityWarp,
    WarpType.AFFINE: AffineWarp,
    WarpType.HOMOGRAPHY: HomographyWarp,
}


def create_warp(warp_type, parameters=None) -> Warp:
    """Instantiate a warp by :class:`WarpType` or its string value."""
    if not isinstance(warp_type, WarpType):
        warp_type = WarpType(str(warp_type).lower())
    return WARP_REGISTRY[warp_type](parameters)

"""Image primitives consumed by the alignment engine.

Thin wrappers over OpenCV, SciPy and NumPy:
    - intensity conversion of single channel images
    - Sobel gradients normalised to intensity units
    - bilinear resampling of an image under a warp
    - solving the Gauss-Newton normal equations
"""

from enum import Enum
from typing import Optional, Tuple

import cv2
import numpy as np
import scipy.linalg
from scipy import ndimage

# A 3x3 Sobel kernel has a gain of 8 on a unit intensity ramp.
SOBEL_SCALE = 0.125


class BorderMode(Enum):
    """Sampling policy for coordinates outside the source image."""
    REPLICATE = "replicate"   # clamp to the nearest edge pixel
    CONSTANT = "constant"     # zero fill

    @property
    def ndimage_mode(self) -> str:
        return "nearest" if self is BorderMode.REPLICATE else "constant"


class DegenerateAlignmentError(RuntimeError):
    """The normal equations cannot be solved reliably.

    Raised when the Gauss-Newton Hessian is singular, ill-conditioned or
    not finite, typically for textureless or too small template regions.
    """

    def __init__(self, message, condition_number=float("inf")):
        super().__init__(message)
        self.condition_number = condition_number


def to_intensity(image: np.ndarray, name: str = "image") -> np.ndarray:
    """Return *image* as a contiguous float64 (H, W) array.

    Accepts (H, W) arrays and (H, W, 1) arrays. Anything else is rejected.
    """
    img = np.asarray(image)
    if img.ndim == 3 and img.shape[2] == 1:
        img = img[:, :, 0]
    if img.ndim != 2:
        raise ValueError(
            f"{name} must be a single channel image, got shape {img.shape}")
    if img.size == 0:
        raise ValueError(f"{name} must not be empty")
    return np.ascontiguousarray(img, dtype=np.float64)


def sobel_gradients(image: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Horizontal and vertical Sobel derivatives in intensity units."""
    gx = cv2.Sobel(image, cv2.CV_64F, 1, 0, ksize=3)
    gy = cv2.Sobel(image, cv2.CV_64F, 0, 1, ksize=3)
    gx *= SOBEL_SCALE
    gy *= SOBEL_SCALE
    return gx, gy


def pixel_grid(shape) -> Tuple[np.ndarray, np.ndarray]:
    """(xs, ys) coordinate arrays for every pixel of an (H, W) image."""
    h, w = shape[:2]
    ys, xs = np.mgrid[0:h, 0:w].astype(np.float64)
    return xs, ys


def warp_image(src: np.ndarray, warp, size: Tuple[int, int],
               border_mode: BorderMode = BorderMode.REPLICATE,
               output: Optional[np.ndarray] = None,
               grid: Optional[Tuple[np.ndarray, np.ndarray]] = None
               ) -> np.ndarray:
    """Resample *src* into a (H, W) = *size* frame under *warp*.

    Destination pixel ``p`` receives ``src`` sampled at ``warp.apply(p)``
    with bilinear interpolation.

    Parameters
    ----------
    src : np.ndarray (H_src, W_src) float
    warp : Warp
    size : (height, width) of the output
    border_mode : BorderMode, policy for out-of-range samples
    output : optional preallocated float64 array of shape *size*
    grid : optional precomputed ``pixel_grid(size)``
    """
    if grid is None:
        grid = pixel_grid(size)
    xs, ys = grid
    xw, yw = warp.apply_grid(xs, ys)
    coords = np.stack([yw, xw])
    if output is None:
        output = np.empty(tuple(size[:2]), dtype=np.float64)
    ndimage.map_coordinates(src, coords, output=output, order=1,
                            mode=border_mode.ndimage_mode, cval=0.0)
    return output


def solve_normal_equations(hessian: np.ndarray, rhs: np.ndarray,
                           max_condition: float = 1e14) -> np.ndarray:
    """Solve ``hessian @ delta = rhs`` for a symmetric Gauss-Newton Hessian.

    Raises
    ------
    DegenerateAlignmentError
        If the Hessian is not finite, is zero or its condition number
        exceeds *max_condition*.
    """
    if not (np.all(np.isfinite(hessian)) and np.all(np.isfinite(rhs))):
        raise DegenerateAlignmentError("Hessian or residual is not finite")
    if not np.any(hessian):
        raise DegenerateAlignmentError(
            "Hessian is zero: template region has no gradient")

    cond = float(np.linalg.cond(hessian))
    if not np.isfinite(cond) or cond > max_condition:
        raise DegenerateAlignmentError(
            f"Hessian is ill-conditioned (cond={cond:.3g}, "
            f"limit={max_condition:.3g})", cond)

    try:
        delta = scipy.linalg.solve(hessian, rhs, assume_a='pos')
    except (np.linalg.LinAlgError, scipy.linalg.LinAlgError) as e:
        raise DegenerateAlignmentError(f"Hessian solve failed: {e}", cond)

    if not np.all(np.isfinite(delta)):
        raise DegenerateAlignmentError("Parameter update is not finite", cond)
    return delta

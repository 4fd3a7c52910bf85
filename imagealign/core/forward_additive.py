"""Forward-additive image alignment.

Aligns a template image with a target image by minimising the sum of
squared intensity differences between the template and the target warped
back into the template frame, with respect to the warp parameters.

This is the classic Lucas-Kanade algorithm; Baker and Matthews call it
forwards-additive because the warp is applied to the target (forward
direction) and parameter updates are added to the current parameters.

Usage::

    warp = TranslationWarp([30, 30])
    fa = AlignForwardAdditive()
    fa.prepare(template, target)
    for _ in range(50):
        fa.align(warp)
        if np.linalg.norm(fa.last_delta) < 1e-3:
            break

References
----------
[1] Lucas, B. D. and Kanade, T. "An iterative image registration technique
    with an application to stereo vision." IJCAI 1981.
[2] Baker, S. and Matthews, I. "Lucas-Kanade 20 years on: A unifying
    framework." IJCV 56.3 (2004): 221-255.
"""

from typing import Optional

import numpy as np

from imagealign.core.image_ops import (
    BorderMode, DegenerateAlignmentError, pixel_grid, sobel_gradients,
    solve_normal_equations, to_intensity, warp_image,
)
from imagealign.core.warp import Warp
from imagealign.utils.helpers import setup_logger

logger = setup_logger(__name__)


class AlignForwardAdditive:
    """Single-step Gauss-Newton refinement of a caller-owned warp.

    Call :meth:`prepare` once with the template and target, then
    :meth:`align` repeatedly with the same warp object. The engine never
    judges convergence; the caller owns the stopping policy.
    """

    def __init__(self, border_mode: BorderMode = BorderMode.REPLICATE,
                 max_condition: float = 1e14):
        self.border_mode = border_mode
        self.max_condition = max_condition

        self._template: Optional[np.ndarray] = None
        self._target: Optional[np.ndarray] = None
        self._grad_x = self._grad_y = None
        self._grid = None
        self._warped_target = None
        self._warped_grad_x = self._warped_grad_y = None
        self._error_image = None
        self._last_delta: Optional[np.ndarray] = None

    @property
    def is_prepared(self) -> bool:
        return self._template is not None

    @property
    def template_shape(self):
        return None if self._template is None else self._template.shape

    @property
    def error_image(self) -> Optional[np.ndarray]:
        """Error image of the last :meth:`align` call (read-only view)."""
        return self._readonly(self._error_image)

    @property
    def warped_target(self) -> Optional[np.ndarray]:
        """Target resampled into the template frame by the last step."""
        return self._readonly(self._warped_target)

    @property
    def last_delta(self) -> Optional[np.ndarray]:
        """Parameter update applied by the last :meth:`align` call."""
        return None if self._last_delta is None else self._last_delta.copy()

    @staticmethod
    def _readonly(arr):
        if arr is None:
            return None
        view = arr.view()
        view.flags.writeable = False
        return view

    def prepare(self, template: np.ndarray, target: np.ndarray):
        """Prepare for alignment.

        Converts both images to float intensities, computes the target
        gradients once and allocates the per-step buffers.

        Parameters
        ----------
        template : np.ndarray (h, w), single channel template image
        target : np.ndarray (H, W), single channel image to align with
        """
        self._template = to_intensity(template, "template")
        self._target = to_intensity(target, "target")

        shape = self._template.shape
        self._grid = pixel_grid(shape)
        self._warped_target = np.empty(shape, dtype=np.float64)
        self._warped_grad_x = np.empty(shape, dtype=np.float64)
        self._warped_grad_y = np.empty(shape, dtype=np.float64)
        self._error_image = np.zeros(shape, dtype=np.float64)
        self._last_delta = None

        self._grad_x, self._grad_y = sobel_gradients(self._target)

        logger.debug(f"Prepared alignment: template {shape[1]}x{shape[0]}, "
                     f"target {self._target.shape[1]}x{self._target.shape[0]}")

    def align(self, warp: Warp) -> float:
        """Perform a single alignment step.

        Refines the parameters of *warp* in place by one Gauss-Newton step
        on the sum of squared intensity errors.

        Parameters
        ----------
        warp : Warp, current estimate; modified to hold the result

        Returns
        -------
        float
            Mean signed error of the template minus the warped target,
            computed before the update.

        Raises
        ------
        RuntimeError
            If :meth:`prepare` has not been called.
        DegenerateAlignmentError
            If the normal equations are singular or ill-conditioned; the
            warp is left unchanged.
        """
        if not self.is_prepared:
            raise RuntimeError("prepare() must be called before align()")

        shape = self._template.shape
        n = warp.n_parameters

        # Warp target and its gradients back to the template frame
        warp_image(self._target, warp, shape, self.border_mode,
                   output=self._warped_target, grid=self._grid)
        warp_image(self._grad_x, warp, shape, self.border_mode,
                   output=self._warped_grad_x, grid=self._grid)
        warp_image(self._grad_y, warp, shape, self.border_mode,
                   output=self._warped_grad_y, grid=self._grid)

        np.subtract(self._template, self._warped_target, out=self._error_image)

        xs, ys = self._grid
        jac = warp.jacobian_grid(xs, ys)
        if jac.shape[-2:] != (2, n):
            raise ValueError(
                f"Warp Jacobian has shape {jac.shape[-2:]}, expected (2, {n})")

        # Steepest descent images: (h, w, n)
        sd = (self._warped_grad_x[..., None] * jac[..., 0, :]
              + self._warped_grad_y[..., None] * jac[..., 1, :])
        sd = sd.reshape(-1, n)

        hessian = np.einsum('ki,kj->ij', sd, sd)
        rhs = np.einsum('ki,k->i', sd, self._error_image.ravel())

        delta = solve_normal_equations(hessian, rhs, self.max_condition)

        # Additive parameter update
        warp.set_parameters(warp.get_parameters() + delta)
        self._last_delta = delta

        mean_error = float(np.mean(self._error_image))
        logger.debug(f"align step: mean error={mean_error:.4f}, "
                     f"|delta|={np.linalg.norm(delta):.3g}")
        return mean_error

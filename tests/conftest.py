"""Shared fixtures: an analytic, smoothly textured intensity scene."""

import numpy as np
import pytest

from imagealign.core.image_ops import pixel_grid


def scene_intensity(xs, ys):
    """Smooth textured intensity field, defined for any real coordinates."""
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    return (128.0
            + 50.0 * np.sin(2 * np.pi * xs / 45.0 + 0.3) * np.cos(2 * np.pi * ys / 55.0)
            + 40.0 * np.exp(-((xs - 70.0) ** 2 + (ys - 60.0) ** 2) / (2 * 18.0 ** 2))
            + 20.0 * np.cos(2 * np.pi * (xs + 0.5 * ys) / 70.0))


def render_template(warp, shape):
    """Template whose pixel p holds the scene at warp.apply(p)."""
    xs, ys = pixel_grid(shape)
    xw, yw = warp.apply_grid(xs, ys)
    return scene_intensity(xw, yw)


@pytest.fixture
def target_image():
    xs, ys = pixel_grid((128, 128))
    return scene_intensity(xs, ys)


@pytest.fixture
def render():
    return render_template

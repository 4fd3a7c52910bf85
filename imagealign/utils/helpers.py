"""Common utility functions for image alignment."""

import logging
import numpy as np
import matplotlib.pyplot as plt
import matplotlib.colors as mcolors


def setup_logger(name, log_file=None, level=logging.INFO):
    """Configure a named logger with console and optional file handler."""
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not logger.handlers:
        fmt = logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s')
        ch = logging.StreamHandler()
        ch.setFormatter(fmt)
        logger.addHandler(ch)
        if log_file:
            fh = logging.FileHandler(log_file)
            fh.setFormatter(fmt)
            logger.addHandler(fh)
    return logger


# ---------------------------------------------------------------------------
# Colormap and overlay utilities
# ---------------------------------------------------------------------------

def error_colormap(error, limit=None, cmap='coolwarm'):
    """Convert a signed error image to an RGBA uint8 image.

    The colour scale is symmetric around zero so that positive and
    negative residuals get opposite hues.

    Parameters
    ----------
    error : np.ndarray (H, W), float
    limit : optional explicit half-range; defaults to max(|error|)
    cmap : str, matplotlib colormap name

    Returns
    -------
    np.ndarray (H, W, 4) uint8 RGBA image
    """
    if limit is None:
        limit = np.nanmax(np.abs(error)) if error.size else 0.0
    if np.isnan(limit) or limit <= 0:
        limit = 1.0

    norm = mcolors.Normalize(vmin=-limit, vmax=limit)
    colormap = plt.get_cmap(cmap)
    rgba = colormap(norm(error))
    mask_nan = np.isnan(error)
    rgba[mask_nan] = [0, 0, 0, 0]
    return (rgba * 255).astype(np.uint8)


def overlay_heatmap(base_image, heatmap_rgba, alpha=0.5):
    """Alpha-blend RGBA heatmap onto a base image.

    Parameters
    ----------
    base_image : np.ndarray (H, W) or (H, W, 3) uint8
    heatmap_rgba : np.ndarray (H, W, 4) uint8
    alpha : float, overlay opacity

    Returns
    -------
    np.ndarray (H, W, 3) uint8 RGB blended image
    """
    if base_image.ndim == 2:
        base_rgb = np.stack([base_image] * 3, axis=-1)
    else:
        base_rgb = base_image.copy()

    h, w = base_rgb.shape[:2]
    hh, hw = heatmap_rgba.shape[:2]
    # Crop to common area
    ch, cw = min(h, hh), min(w, hw)
    base_crop = base_rgb[:ch, :cw].astype(np.float32)
    heat_crop = heatmap_rgba[:ch, :cw].astype(np.float32)

    heat_alpha = (heat_crop[:, :, 3:4] / 255.0) * alpha
    blended = base_crop * (1 - heat_alpha) + heat_crop[:, :, :3] * heat_alpha
    result = base_rgb.astype(np.uint8)
    result[:ch, :cw] = np.clip(blended, 0, 255).astype(np.uint8)
    return result


def to_uint8(image):
    """Linearly rescale a float image to the 0-255 uint8 range."""
    img = np.asarray(image, dtype=np.float64)
    if img.size == 0:
        return img.astype(np.uint8)
    lo, hi = float(np.min(img)), float(np.max(img))
    if hi <= lo:
        return np.zeros(img.shape, dtype=np.uint8)
    return np.clip((img - lo) * (255.0 / (hi - lo)), 0, 255).astype(np.uint8)

"""Image loading for alignment inputs."""

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np
import cv2
from imagealign.utils.helpers import setup_logger

logger = setup_logger(__name__)


@dataclass
class ImageData:
    """Container for a loaded grayscale image."""
    filepath: str
    image_gray: np.ndarray = field(repr=False)
    width: int = 0
    height: int = 0

    @property
    def filename(self):
        return os.path.basename(self.filepath)

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.height, self.width)

    def crop(self, x: int, y: int, w: int, h: int) -> np.ndarray:
        """Return a copy of the (x, y, w, h) region of the grayscale image."""
        if w <= 0 or h <= 0:
            raise ValueError(f"Invalid crop size: {w}x{h}")
        if x < 0 or y < 0 or x + w > self.width or y + h > self.height:
            raise ValueError(
                f"Crop ({x}, {y}, {w}, {h}) outside image "
                f"{self.width}x{self.height}")
        return self.image_gray[y:y + h, x:x + w].copy()


class ImageLoader:
    """Load single channel intensity images from disk."""

    SUPPORTED_FORMATS = ('.jpg', '.jpeg', '.png', '.tif', '.tiff', '.bmp', '.pgm')

    @staticmethod
    def load(filepath: str) -> ImageData:
        """Load an image file as grayscale.

        Colour images are converted to intensity by OpenCV.
        """
        if not os.path.exists(filepath):
            raise FileNotFoundError(f"Image not found: {filepath}")

        ext = os.path.splitext(filepath)[1].lower()
        if ext not in ImageLoader.SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported format: {ext}")

        image_gray = cv2.imread(filepath, cv2.IMREAD_GRAYSCALE)
        if image_gray is None:
            raise IOError(f"Failed to load image: {filepath}")

        # Textureless images give a singular Hessian
        img_std = float(image_gray.std())
        if img_std < 10:
            logger.warning(
                f"Image '{os.path.basename(filepath)}' has very low contrast "
                f"(std={img_std:.1f}). Alignment may be degenerate.")

        h, w = image_gray.shape
        logger.info(f"Loaded {os.path.basename(filepath)}: {w}x{h}")
        return ImageData(filepath=filepath, image_gray=image_gray,
                         width=w, height=h)

    @staticmethod
    def from_array(image: np.ndarray, name: str = "<array>") -> ImageData:
        """Wrap an in-memory array, converting BGR input to grayscale."""
        img = np.asarray(image)
        if img.ndim == 3 and img.shape[2] == 3:
            img = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
        elif img.ndim == 3 and img.shape[2] == 1:
            img = img[:, :, 0]
        if img.ndim != 2:
            raise ValueError(f"Unsupported image shape: {img.shape}")
        h, w = img.shape
        return ImageData(filepath=name, image_gray=img, width=w, height=h)

    @staticmethod
    def save(filepath: str, image: np.ndarray):
        """Write an image, creating the parent directory if needed."""
        parent = os.path.dirname(os.path.abspath(filepath))
        os.makedirs(parent, exist_ok=True)
        if not cv2.imwrite(filepath, image):
            raise IOError(f"Failed to write image: {filepath}")

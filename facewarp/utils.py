"""
Utility functions for facewarp.

This module provides image helpers used outside the warp core:
- Loading and saving images with OpenCV
- Horizontal mirroring for selfie-view display
"""

from pathlib import Path
from typing import Union

import cv2
import numpy as np
from numpy.typing import NDArray


def load_image(filepath: Union[str, Path]) -> NDArray[np.uint8]:
    """
    Load an image as stored (BGR or BGRA channel order).

    Raises:
        FileNotFoundError: If the file is missing or cannot be decoded
    """
    image = cv2.imread(str(filepath), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise FileNotFoundError(f"Could not read image: {filepath}")
    return image


def save_image(image: NDArray[np.uint8], filepath: Union[str, Path]) -> Path:
    """
    Save an image, creating parent directories as needed.

    Note:
        Channel order is written as given; images from load_image() are
        already in OpenCV's BGR(A) order.

    Raises:
        ValueError: If OpenCV cannot encode the image to this path
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    if not cv2.imwrite(str(filepath), image):
        raise ValueError(f"Could not write image: {filepath}")
    return filepath


def mirror_image(image: NDArray[np.uint8]) -> NDArray[np.uint8]:
    """Flip horizontally; column x moves to width - 1 - x."""
    return cv2.flip(image, 1).reshape(image.shape)

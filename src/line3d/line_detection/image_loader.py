"""
Image loading and undistortion for line detection.
"""

import logging
from pathlib import Path
from typing import Generator, List, Optional, Sequence, Tuple

import cv2
import numpy as np


logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ['.jpg', '.jpeg', '.png', '.bmp', '.tif', '.tiff']


class ImageLoader:
    """
    Utility class for loading the images of a calibrated dataset.
    """

    def __init__(self, image_dir: str):
        """
        Initialize image loader.

        Args:
            image_dir: Path to directory containing images
        """
        self.image_dir = Path(image_dir)

        if not self.image_dir.is_dir():
            raise FileNotFoundError(f"Image directory not found: {image_dir}")

    def get_image_files(self) -> List[str]:
        """Get sorted list of image file names."""
        image_files = []
        for ext in IMAGE_EXTENSIONS:
            image_files.extend(self.image_dir.glob(f'*{ext}'))
            image_files.extend(self.image_dir.glob(f'*{ext.upper()}'))

        return sorted({f.name for f in image_files})

    def load_image(self, name: str) -> Optional[np.ndarray]:
        """
        Load a single image by file name.

        Returns:
            Image array or None if it could not be read
        """
        image = cv2.imread(str(self.image_dir / name))

        if image is None:
            logger.warning("could not load image %s", name)
            return None

        return image

    def load_images(self, names: Optional[Sequence[str]] = None) -> Generator[Tuple[str, np.ndarray], None, None]:
        """
        Load images in order.

        Yields:
            Tuple of (file name, image array)
        """
        if names is None:
            names = self.get_image_files()

        for name in names:
            image = self.load_image(name)
            if image is not None:
                yield name, image


def undistort_image(image: np.ndarray,
                    K: np.ndarray,
                    radial_coeffs: Sequence[float] = (0.0, 0.0, 0.0),
                    tangential_coeffs: Sequence[float] = (0.0, 0.0)) -> np.ndarray:
    """
    Remove lens distortion from an image.

    Args:
        image: Input image
        K: Camera intrinsic matrix (3, 3)
        radial_coeffs: (k1, k2, k3)
        tangential_coeffs: (p1, p2)

    Returns:
        Undistorted image with the same intrinsics
    """
    cvK = np.zeros((3, 3), dtype=np.float64)
    cvK[0, 0] = K[0, 0]
    cvK[1, 1] = K[1, 1]
    cvK[0, 2] = K[0, 2]
    cvK[1, 2] = K[1, 2]
    cvK[2, 2] = 1.0

    dist_coeffs = np.array([
        radial_coeffs[0], radial_coeffs[1],
        tangential_coeffs[0], tangential_coeffs[1],
        radial_coeffs[2]
    ], dtype=np.float64)

    height, width = image.shape[:2]
    map_x, map_y = cv2.initUndistortRectifyMap(
        cvK, dist_coeffs, np.eye(3), cvK, (width, height), cv2.CV_32FC1
    )

    return cv2.remap(image, map_x, map_y, cv2.INTER_LINEAR,
                     borderMode=cv2.BORDER_CONSTANT)

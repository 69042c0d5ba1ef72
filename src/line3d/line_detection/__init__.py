"""Line detection module for extracting 2D line segments."""

from .line_detector import LSDLineDetector
from .image_loader import ImageLoader, undistort_image

__all__ = [
    'LSDLineDetector',
    'ImageLoader',
    'undistort_image'
]

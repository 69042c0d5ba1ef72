"""
Line Segment Detector Module

This module extracts 2D line segments from images with OpenCV's LSD
implementation. Segments are returned in original image coordinates,
longest first.
"""

import logging
from pathlib import Path
from typing import Optional

import cv2
import numpy as np


logger = logging.getLogger(__name__)


class LSDLineDetector:
    """
    Line Segment Detector using OpenCV's LSD algorithm.
    """

    def __init__(self,
                 max_image_width: int = 1920,
                 max_line_segments: int = 3000,
                 min_length_factor: float = 0.005,
                 cache_dir: Optional[str] = None):
        """
        Initialize LSD detector.

        Args:
            max_image_width: Images with a larger dimension are downscaled for detection
            max_line_segments: Maximum number of segments to return
            min_length_factor: Minimum segment length as fraction of the image diagonal
            cache_dir: Optional directory to store and reload detections
        """
        self.max_image_width = max_image_width
        self.max_line_segments = max_line_segments
        self.min_length_factor = min_length_factor
        self.cache_dir = Path(cache_dir) if cache_dir else None

        if self.cache_dir is not None:
            self.cache_dir.mkdir(parents=True, exist_ok=True)

        self.lsd = cv2.createLineSegmentDetector(cv2.LSD_REFINE_ADV)

    def _to_grayscale(self, image: np.ndarray) -> Optional[np.ndarray]:
        if image.dtype != np.uint8:
            return None

        if image.ndim == 3 and image.shape[2] == 3:
            return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        if image.ndim == 2:
            return image.copy()

        return None

    def _cache_file(self, view_id, width: int, height: int) -> Optional[Path]:
        if self.cache_dir is None or view_id is None:
            return None
        return self.cache_dir / f"segments_{view_id}_{width}x{height}.npy"

    def detect(self, view_id, image: np.ndarray) -> Optional[np.ndarray]:
        """
        Detect line segments in an image.

        Args:
            view_id: Identifier used for the detection cache
            image: 8-bit image (H, W, 3) or (H, W)

        Returns:
            Segments (N, 4) as [x1, y1, x2, y2] sorted by length, or None
            if the image type is unsupported or nothing was found
        """
        gray = self._to_grayscale(image)
        if gray is None:
            logger.error("image type not supported! must be 8-bit gray or 8-bit 3-channel!")
            return None

        height, width = gray.shape[:2]
        max_dim = max(height, width)

        upscale_x = 1.0
        upscale_y = 1.0
        if max_dim > self.max_image_width:
            s = float(self.max_image_width) / float(max_dim)
            resized = cv2.resize(gray, None, fx=s, fy=s)
            upscale_x = float(width) / float(resized.shape[1])
            upscale_y = float(height) / float(resized.shape[0])
        else:
            resized = gray

        cache_file = self._cache_file(view_id, resized.shape[1], resized.shape[0])
        if cache_file is not None and cache_file.exists():
            return np.load(cache_file)

        lines, _, _, _ = self.lsd.detect(resized)
        if lines is None:
            return None

        lines = lines.reshape(-1, 4).astype(np.float64)
        lines[:, [0, 2]] *= upscale_x
        lines[:, [1, 3]] *= upscale_y

        # Filter by length
        diag = np.sqrt(float(width * width + height * height))
        lengths = np.sqrt((lines[:, 2] - lines[:, 0])**2 +
                          (lines[:, 3] - lines[:, 1])**2)
        valid_mask = lengths > diag * self.min_length_factor
        lines = lines[valid_mask]
        lengths = lengths[valid_mask]

        if len(lines) == 0:
            return None

        # Sort by length and take top N
        order = np.argsort(-lengths, kind='stable')[:self.max_line_segments]
        lines = lines[order]

        if cache_file is not None:
            np.save(cache_file, lines)

        return lines

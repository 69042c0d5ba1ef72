"""
Per-image geometry for line reconstruction.

A View holds the calibration of one image together with the 2D line
segments detected in it, and provides ray casting, unprojection and the
depth-dependent spatial regularizer used when scoring 3D hypotheses.
"""

import math
from typing import Dict, List

import numpy as np

from .geometry import EPS, Segment3D, to_homogeneous


class View:
    """Represents a calibrated image with its detected line segments."""

    def __init__(self,
                 view_id: int,
                 segments: np.ndarray,
                 K: np.ndarray,
                 R: np.ndarray,
                 t: np.ndarray,
                 width: int,
                 height: int,
                 median_depth: float = 0.0,
                 min_line_length_factor: float = 0.005):
        """
        Initialize view.

        Args:
            view_id: Unique view identifier
            segments: Line segments (N, 4) as [x1, y1, x2, y2] in pixels
            K: Camera intrinsic matrix (3, 3)
            R: Rotation matrix world->camera (3, 3)
            t: Translation vector (3,) or (3, 1)
            width: Image width in pixels
            height: Image height in pixels
            median_depth: Initial median scene depth (0 if unknown)
            min_line_length_factor: Minimum projected length as fraction of the diagonal
        """
        self.id = view_id
        self.segments = np.asarray(segments, dtype=np.float64).reshape(-1, 4)
        self.K = np.asarray(K, dtype=np.float64)
        self.R = np.asarray(R, dtype=np.float64)
        self.t = np.asarray(t, dtype=np.float64).reshape(3)
        self.width = int(width)
        self.height = int(height)

        self.K_inv = np.linalg.inv(self.K)
        self.P = self.K @ np.hstack([self.R, self.t.reshape(3, 1)])

        # Camera center in world coordinates
        self.C = -self.R.T @ self.t

        self.diagonal = math.sqrt(float(self.width * self.width + self.height * self.height))
        self.min_line_length = self.diagonal * min_line_length_factor

        self.median_depth = float(median_depth)
        self.median_sigma = 0.0
        self.k = 0.0

        self.collinearity_t = 0.0
        self._collinear: Dict[int, List[int]] = {}

    @property
    def num_lines(self) -> int:
        return self.segments.shape[0]

    @property
    def optical_axis(self) -> np.ndarray:
        return self.R[2]

    def get_normalized_ray(self, p: np.ndarray) -> np.ndarray:
        """Unit ray direction (world frame) through pixel ``p``."""
        ray = self.R.T @ (self.K_inv @ to_homogeneous(p))
        return ray / np.linalg.norm(ray)

    def get_normalized_line_point_ray(self, seg_id: int, first: bool) -> np.ndarray:
        """Unit ray through the first or second endpoint of a segment."""
        coords = self.segments[seg_id]
        if first:
            return self.get_normalized_ray(coords[:2])
        return self.get_normalized_ray(coords[2:])

    def unproject_segment(self, seg_id: int, depth1: float, depth2: float) -> Segment3D:
        """Backproject a segment with the given depths along its endpoint rays."""
        ray1 = self.get_normalized_line_point_ray(seg_id, True)
        ray2 = self.get_normalized_line_point_ray(seg_id, False)
        return Segment3D(self.C + depth1 * ray1, self.C + depth2 * ray2)

    def project_point(self, X: np.ndarray) -> np.ndarray:
        """Project a 3D point to pixel coordinates; returns (u, v, z_cam)."""
        x_h = self.P @ np.append(X, 1.0)
        if abs(x_h[2]) < EPS:
            return np.array([np.inf, np.inf, 0.0])
        return np.array([x_h[0] / x_h[2], x_h[1] / x_h[2], x_h[2]])

    def compute_spatial_regularizer(self, sigma_px: float):
        """
        Set ``k`` so that ``depth * k`` is the world-space size of
        ``sigma_px`` pixels around the principal point.
        """
        cx = self.K[0, 2]
        cy = self.K[1, 2]

        ray1 = self.get_normalized_ray(np.array([cx, cy]))
        ray2 = self.get_normalized_ray(np.array([cx + sigma_px, cy]))

        self.k = float(np.linalg.norm(ray1 - ray2))
        self.median_sigma = self.k * self.median_depth

    def update_k(self, sigma_world: float):
        """Fixed regularizer in world units."""
        self.median_sigma = sigma_world
        if self.median_depth > EPS:
            self.k = sigma_world / self.median_depth
        else:
            self.k = sigma_world

    def update_median_depth(self, median_depth: float, sigma_world: float = -1.0):
        """
        Update the median depth; a positive ``sigma_world`` keeps the
        regularizer fixed in world units, otherwise it stays pixel-relative.
        """
        self.median_depth = float(median_depth)

        if sigma_world > 0.0:
            self.update_k(sigma_world)
        else:
            self.median_sigma = self.k * self.median_depth

    def sigma_at(self, depth: float) -> float:
        """Positional uncertainty at the given depth, capped at the median depth."""
        if self.median_depth > EPS and depth > self.median_depth:
            return self.median_sigma
        return depth * self.k

    def optical_axes_angle(self, other: 'View') -> float:
        """Angle between the viewing directions of both views (radians)."""
        dot_p = float(np.dot(self.optical_axis, other.optical_axis))
        return math.acos(max(min(dot_p, 1.0), -1.0))

    def baseline(self, other: 'View') -> float:
        return float(np.linalg.norm(self.C - other.C))

    def find_collinear_segments(self, dist_t: float):
        """
        Find pairs of segments lying on a common 2D line.

        Two segments are collinear if both endpoints of each one are within
        ``dist_t`` pixels of the infinite line through the other.
        """
        self.collinearity_t = dist_t
        self._collinear = {}

        if dist_t <= EPS or self.num_lines < 2:
            return

        p1 = np.hstack([self.segments[:, :2], np.ones((self.num_lines, 1))])
        p2 = np.hstack([self.segments[:, 2:], np.ones((self.num_lines, 1))])
        lines = np.cross(p1, p2)
        norms = np.linalg.norm(lines[:, :2], axis=1)
        valid = norms > EPS
        lines[valid] /= norms[valid, None]

        # dist[i, j]: distance of the endpoints of segment j to line i
        d1 = np.abs(lines @ p1.T)
        d2 = np.abs(lines @ p2.T)
        close = (d1 < dist_t) & (d2 < dist_t)
        close &= close.T
        close &= valid[:, None] & valid[None, :]
        np.fill_diagonal(close, False)

        for i, j in zip(*np.nonzero(close)):
            self._collinear.setdefault(int(i), []).append(int(j))

    def collinear_segments(self, seg_id: int) -> List[int]:
        return self._collinear.get(seg_id, [])

    def projected_long_enough(self, seg3d: Segment3D) -> bool:
        """True if the segment projects to more than the minimum pixel length."""
        q1 = self.project_point(seg3d.P1)
        q2 = self.project_point(seg3d.P2)

        if q1[2] <= EPS or q2[2] <= EPS:
            return False

        return float(np.linalg.norm(q1[:2] - q2[:2])) > self.min_line_length

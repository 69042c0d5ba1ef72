"""
Nonlinear refinement of clustered 3D lines.

Each cluster line is refined independently by minimizing the pixel distance
of the residual 2D segment endpoints to the reprojected 3D line.
"""

import logging
from typing import List, Mapping

import numpy as np
from scipy.optimize import least_squares
from tqdm import tqdm

from .assembly import project_segment_onto_line
from .geometry import EPS, LineCluster3D, Segment3D
from .view import View


logger = logging.getLogger(__name__)


def line_reprojection_residuals(params: np.ndarray,
                                cluster: LineCluster3D,
                                views: Mapping[int, View]) -> np.ndarray:
    """Signed endpoint-to-line distances (pixels) for all residual segments."""
    X1 = params[:3]
    X2 = params[3:]

    residuals = []
    for seg in cluster.residuals:
        view = views[seg.view_id]
        x1 = view.P @ np.append(X1, 1.0)
        x2 = view.P @ np.append(X2, 1.0)

        l = np.cross(x1, x2)
        norm = np.linalg.norm(l[:2])
        if norm < EPS:
            residuals.extend([0.0, 0.0])
            continue
        l = l / norm

        coords = view.segments[seg.seg_id]
        residuals.append(l @ np.array([coords[0], coords[1], 1.0]))
        residuals.append(l @ np.array([coords[2], coords[3], 1.0]))

    return np.asarray(residuals)


class LineOptimizer:
    """Refines LineCluster3D geometry in place with scipy's least_squares."""

    def __init__(self, views: Mapping[int, View], max_iter: int = 100):
        self.views = views
        self.max_iter = max(int(max_iter), 1)

    def optimize_cluster(self, cluster: LineCluster3D) -> bool:
        """Refine one cluster; returns False (cluster untouched) on failure."""
        x0 = np.concatenate([cluster.seg3d.P1, cluster.seg3d.P2])

        result = least_squares(
            line_reprojection_residuals,
            x0,
            args=(cluster, self.views),
            method="trf",
            loss="huber",
            f_scale=1.0,
            max_nfev=self.max_iter,
        )

        if not result.success and result.status != 0:
            return False

        refined = Segment3D(result.x[:3], result.x[3:])
        if refined.length < EPS:
            return False

        # restore the extent of the representative segment
        corresponding = cluster.corresponding_seg2d
        projected = project_segment_onto_line(
            self.views[corresponding.view_id], corresponding.seg_id, refined
        )
        if projected is None or projected.length < EPS:
            return False

        cluster.seg3d = projected
        return True

    def optimize(self, clusters: List[LineCluster3D]) -> int:
        """
        Refine all clusters.

        Returns:
            Number of successfully refined clusters
        """
        num_refined = 0
        for cluster in tqdm(clusters, desc="Optimizing 3D lines", leave=False):
            if self.optimize_cluster(cluster):
                num_refined += 1

        logger.info("optimized %d/%d clusters", num_refined, len(clusters))
        return num_refined

"""
From clusters to final 3D lines.

A 3D line is fitted to the hypotheses of each cluster, the longest
hypothesis' 2D segment is projected onto it, and all residual 2D segments are
swept along the line to find the parts seen by at least three cameras.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np

from .geometry import (
    EPS, EstimatedPosition, FinalLine3D, LineCluster3D, Segment2D, Segment3D
)
from .view import View


logger = logging.getLogger(__name__)

# minimum number of distinct cameras supporting a part of a 3D line
MIN_OPEN_CAMERAS = 3


def project_segment_onto_line(view: View, seg_id: int, line: Segment3D) -> Optional[Segment3D]:
    """
    Project a 2D segment onto a 3D line.

    Each endpoint ray is replaced by its closest point on the line.

    Returns:
        The projected 3D segment, or None if a ray is (nearly) parallel to the line
    """
    P = line.P1
    u = line.dir

    Q = view.C
    v1 = view.get_normalized_line_point_ray(seg_id, True)
    v2 = view.get_normalized_line_point_ray(seg_id, False)

    w = P - Q

    a = np.dot(u, u)
    b1 = np.dot(u, v1)
    b2 = np.dot(u, v2)
    c1 = np.dot(v1, v1)
    c2 = np.dot(v2, v2)
    d = np.dot(u, w)
    e1 = np.dot(v1, w)
    e2 = np.dot(v2, w)

    denom1 = a * c1 - b1 * b1
    denom2 = a * c2 - b2 * b2

    if abs(denom1) <= EPS or abs(denom2) <= EPS:
        return None

    s1 = (b1 * e1 - c1 * d) / denom1
    s2 = (b2 * e2 - c2 * d) / denom2

    return Segment3D(P + s1 * u, P + s2 * u)


def fit_line_cluster(cluster: List[Segment2D],
                     views: Mapping[int, View],
                     estimated: List[EstimatedPosition],
                     entry_map: Mapping[Segment2D, int]) -> Optional[LineCluster3D]:
    """
    Fit a 3D line to the hypotheses of a cluster.

    The direction is the principal axis of the hypothesis endpoints; the
    member with the longest hypothesis defines the extent.

    Returns:
        LineCluster3D, or None for degenerate fits
    """
    points = []
    max_len = 0.0
    corresponding = None

    for seg in cluster:
        hyp3d = estimated[entry_map[seg]].seg3d
        points.append(hyp3d.P1)
        points.append(hyp3d.P2)

        # corresponding 2D segment -> longest 3D hypothesis
        if hyp3d.length > max_len:
            max_len = hyp3d.length
            corresponding = seg

    if corresponding is None or len(points) < 2:
        return None

    L_points = np.array(points)
    centroid = L_points.mean(axis=0)
    centered = L_points - centroid
    scatter = centered.T @ centered

    U, S, _ = np.linalg.svd(scatter)
    if S.max() < EPS:
        return None

    direction = U[:, int(np.argmax(S))]
    direction = direction / np.linalg.norm(direction)

    initial_line = Segment3D(centroid, centroid + direction)
    cluster_line = project_segment_onto_line(
        views[corresponding.view_id], corresponding.seg_id, initial_line
    )

    if cluster_line is None or cluster_line.length < EPS:
        return None

    return LineCluster3D(cluster_line, corresponding, list(cluster))


@dataclass
class _PointOnLine:
    line_id: int
    point_id: int
    view_id: int
    dist_to_border: float = 0.0


def find_collinear_segments(cluster: LineCluster3D,
                            views: Mapping[int, View]) -> List[Segment3D]:
    """
    Sweep the projected residual segments along the cluster line.

    A 3D segment is emitted for every maximal stretch of the line that is
    covered by projected segments from at least three distinct views.
    """
    collinear: List[Segment3D] = []
    cog = cluster.seg3d.midpoint

    line_points: List[_PointOnLine] = []
    pts: Dict[int, np.ndarray] = {}
    dist_to_cog = -1.0
    border = cog

    for line_id, seg in enumerate(cluster.residuals):
        proj = project_segment_onto_line(views[seg.view_id], seg.seg_id, cluster.seg3d)
        if proj is None:
            continue

        for point_id, P in ((2 * line_id, proj.P1), (2 * line_id + 1, proj.P2)):
            pts[point_id] = P
            line_points.append(_PointOnLine(line_id, point_id, seg.view_id))

            d = float(np.linalg.norm(P - cog))
            if d > dist_to_cog:
                dist_to_cog = d
                border = P

    # need at least three projected segments
    if len(line_points) < 2 * MIN_OPEN_CAMERAS:
        return collinear

    for lp in line_points:
        lp.dist_to_border = float(np.linalg.norm(pts[lp.point_id] - border))
    line_points.sort(key=lambda lp: lp.dist_to_border)

    open_per_view: Dict[int, int] = {}
    open_lines = set()
    opened = False
    current_start = None

    for lp in line_points:
        if lp.line_id not in open_lines:
            open_lines.add(lp.line_id)
            open_per_view[lp.view_id] = open_per_view.get(lp.view_id, 0) + 1
        else:
            open_lines.discard(lp.line_id)
            open_per_view[lp.view_id] -= 1
            if open_per_view[lp.view_id] == 0:
                del open_per_view[lp.view_id]

        if opened and len(open_per_view) < MIN_OPEN_CAMERAS:
            collinear.append(Segment3D(current_start, pts[lp.point_id]))
            opened = False
        elif not opened and len(open_per_view) >= MIN_OPEN_CAMERAS:
            current_start = pts[lp.point_id]
            opened = True

    return collinear


def compute_final_lines(clusters: List[LineCluster3D],
                        views: Mapping[int, View]) -> List[FinalLine3D]:
    """Turn every cluster with supported parts into a FinalLine3D."""
    lines = []
    for cluster in clusters:
        collinear = find_collinear_segments(cluster, views)
        if collinear:
            lines.append(FinalLine3D(collinear, cluster))
    return lines


def filter_tiny_segments(lines: List[FinalLine3D],
                         views: Mapping[int, View]) -> Tuple[List[FinalLine3D], int]:
    """
    Remove 3D segments that project too short into their representative view.

    Returns:
        Tuple of (remaining lines, number of removed lines)
    """
    filtered = []
    for line in lines:
        view = views[line.underlying_cluster.corresponding_seg2d.view_id]
        segments = [s for s in line.collinear_segments if view.projected_long_enough(s)]
        if segments:
            filtered.append(FinalLine3D(segments, line.underlying_cluster))

    return filtered, len(lines) - len(filtered)

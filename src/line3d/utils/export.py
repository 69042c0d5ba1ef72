"""
Export of reconstructed 3D lines.
"""

from pathlib import Path
from typing import List, Mapping

import numpy as np


def lines_to_array(lines3d) -> np.ndarray:
    """All collinear 3D segments as an (N, 6) array [x1, y1, z1, x2, y2, z2]."""
    rows = []
    for line in lines3d:
        for seg in line.collinear_segments:
            rows.append(np.concatenate([seg.P1, seg.P2]))

    if len(rows) == 0:
        return np.zeros((0, 6))
    return np.array(rows)


def save_txt(lines3d, views: Mapping, output_path: str):
    """
    Write the lines as text, one line per 3D line::

        n P1x P1y P1z Q1x Q1y Q1z ... m view_id seg_id p1x p1y p2x p2y ...

    with ``n`` collinear 3D segments followed by the ``m`` 2D segments of
    the underlying cluster.
    """
    with open(output_path, 'w') as f:
        for line in lines3d:
            parts: List[str] = [str(len(line.collinear_segments))]
            for seg in line.collinear_segments:
                parts.extend(f"{v:.6f}" for v in np.concatenate([seg.P1, seg.P2]))

            residuals = line.underlying_cluster.residuals
            parts.append(str(len(residuals)))
            for seg2d in residuals:
                coords = views[seg2d.view_id].segments[seg2d.seg_id]
                parts.append(str(seg2d.view_id))
                parts.append(str(seg2d.seg_id))
                parts.extend(f"{v:.3f}" for v in coords)

            f.write(" ".join(parts) + "\n")


def save_obj(lines3d, output_path: str):
    """Write the 3D segments as OBJ polylines."""
    segments = lines_to_array(lines3d)

    with open(output_path, 'w') as f:
        for seg in segments:
            f.write(f"v {seg[0]:.6f} {seg[1]:.6f} {seg[2]:.6f}\n")
            f.write(f"v {seg[3]:.6f} {seg[4]:.6f} {seg[5]:.6f}\n")

        for i in range(len(segments)):
            f.write(f"l {2 * i + 1} {2 * i + 2}\n")


def save_stl(lines3d, output_path: str, name: str = "lines3d"):
    """Write the 3D segments as degenerate ASCII STL facets (P1, P2, P1)."""
    segments = lines_to_array(lines3d)

    with open(output_path, 'w') as f:
        f.write(f"solid {name}\n")
        for seg in segments:
            P1 = seg[:3]
            P2 = seg[3:]
            f.write("facet normal 1.0e+000 0.0e+000 0.0e+000\n")
            f.write("outer loop\n")
            for X in (P1, P2, P1):
                f.write(f"vertex {X[0]:e} {X[1]:e} {X[2]:e}\n")
            f.write("endloop\n")
            f.write("endfacet\n")
        f.write(f"endsolid {name}\n")


def export_results(lines3d, views: Mapping, output_dir: str, output_config: Mapping) -> List[str]:
    """Write the result files enabled in ``output_config``; returns their paths."""
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    written = []
    if output_config.get('save_txt', True):
        save_txt(lines3d, views, str(output_path / 'lines3d.txt'))
        written.append(str(output_path / 'lines3d.txt'))
    if output_config.get('save_obj', True):
        save_obj(lines3d, str(output_path / 'lines3d.obj'))
        written.append(str(output_path / 'lines3d.obj'))
    if output_config.get('save_stl', False):
        save_stl(lines3d, str(output_path / 'lines3d.stl'))
        written.append(str(output_path / 'lines3d.stl'))

    return written

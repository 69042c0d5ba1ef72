"""
Visualization utilities for 2D segments and reconstructed 3D lines.
"""

from typing import List, Optional, Tuple

import cv2
import matplotlib.pyplot as plt
import numpy as np
import open3d as o3d

from .export import lines_to_array


def draw_lines_on_image(image: np.ndarray,
                        lines: np.ndarray,
                        color: Tuple[int, int, int] = (0, 255, 0),
                        thickness: int = 2) -> np.ndarray:
    """
    Draw line segments on an image.

    Args:
        image: Input image (H, W, 3)
        lines: Line segments (N, 4) as [x1, y1, x2, y2]
        color: Line color (B, G, R)
        thickness: Line thickness

    Returns:
        Image with drawn lines
    """
    result = image.copy()

    for line in lines:
        x1, y1, x2, y2 = line
        pt1 = (int(round(x1)), int(round(y1)))
        pt2 = (int(round(x2)), int(round(y2)))
        cv2.line(result, pt1, pt2, color, thickness)

    return result


def visualize_3d_lines(lines3d,
                       camera_centers: Optional[np.ndarray] = None,
                       save_path: Optional[str] = None):
    """
    Plot reconstructed 3D lines (and cameras) with matplotlib.

    Args:
        lines3d: List of FinalLine3D
        camera_centers: Optional camera center positions (M, 3)
        save_path: Optional path to save the figure
    """
    segments = lines_to_array(lines3d)

    fig = plt.figure(figsize=(12, 10))
    ax = fig.add_subplot(111, projection='3d')

    for seg in segments:
        ax.plot([seg[0], seg[3]],
                [seg[1], seg[4]],
                [seg[2], seg[5]],
                'b-', linewidth=1.5, alpha=0.7)

    if camera_centers is not None and len(camera_centers) > 0:
        ax.scatter(camera_centers[:, 0],
                   camera_centers[:, 1],
                   camera_centers[:, 2],
                   c='r', marker='o', s=20, label='Cameras')
        ax.legend()

    ax.set_xlabel('X')
    ax.set_ylabel('Y')
    ax.set_zlabel('Z')
    ax.set_title('3D Line Reconstruction')

    if len(segments) > 0:
        points = segments.reshape(-1, 3)
        mid = 0.5 * (points.max(axis=0) + points.min(axis=0))
        max_range = 0.5 * (points.max(axis=0) - points.min(axis=0)).max()
        ax.set_xlim(mid[0] - max_range, mid[0] + max_range)
        ax.set_ylim(mid[1] - max_range, mid[1] + max_range)
        ax.set_zlim(mid[2] - max_range, mid[2] + max_range)

    if save_path:
        plt.savefig(save_path, dpi=300, bbox_inches='tight')
    else:
        plt.show()

    plt.close(fig)


def create_line_set(lines3d,
                    color: Tuple[float, float, float] = (0, 0, 1)) -> o3d.geometry.LineSet:
    """
    Create an Open3D line set from 3D lines.

    Args:
        lines3d: List of FinalLine3D
        color: RGB color (0-1 range)

    Returns:
        Open3D LineSet
    """
    segments = lines_to_array(lines3d)
    points = segments.reshape(-1, 3)
    indices = np.arange(len(points)).reshape(-1, 2)

    line_set = o3d.geometry.LineSet()
    line_set.points = o3d.utility.Vector3dVector(points)
    line_set.lines = o3d.utility.Vector2iVector(indices)
    line_set.paint_uniform_color(color)

    return line_set


def save_line_set(lines3d, save_path: str) -> bool:
    """Write the 3D lines as an Open3D line set (e.g. .ply)."""
    return o3d.io.write_line_set(save_path, create_line_set(lines3d))


def show_line_set(lines3d, window_name: str = '3D Lines'):
    o3d.visualization.draw_geometries([create_line_set(lines3d)],
                                      window_name=window_name,
                                      width=1024,
                                      height=768)


def plot_line_statistics(lines_2d_per_view: List[np.ndarray],
                         lines3d,
                         save_path: Optional[str] = None):
    """
    Plot statistics about detected and reconstructed lines.

    Args:
        lines_2d_per_view: List of 2D segment arrays per view
        lines3d: List of FinalLine3D
        save_path: Optional path to save figure
    """
    segments = lines_to_array(lines3d)
    fig, axes = plt.subplots(1, 2, figsize=(12, 5))

    all_2d_lengths = []
    for lines in lines_2d_per_view:
        if len(lines) > 0:
            lengths = np.sqrt((lines[:, 2] - lines[:, 0])**2 +
                              (lines[:, 3] - lines[:, 1])**2)
            all_2d_lengths.extend(lengths)

    if len(all_2d_lengths) > 0:
        axes[0].hist(all_2d_lengths, bins=50)
        axes[0].set_xlabel('Length (pixels)')
        axes[0].set_ylabel('Count')
        axes[0].set_title('2D Segment Length Distribution')
        axes[0].grid(True)

    if len(segments) > 0:
        lengths_3d = np.linalg.norm(segments[:, 3:] - segments[:, :3], axis=1)
        axes[1].hist(lengths_3d, bins=30)
        axes[1].set_xlabel('Length (world units)')
        axes[1].set_ylabel('Count')
        axes[1].set_title('3D Segment Length Distribution')
        axes[1].grid(True)

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=300, bbox_inches='tight')
    else:
        plt.show()

    plt.close(fig)

"""Line reconstruction module for matching, clustering and assembling 3D lines."""

from .line_reconstructor import LineReconstructor
from .geometry import (
    Segment2D,
    Segment3D,
    Match,
    Thresholds,
    LineCluster3D,
    FinalLine3D
)
from .camera_utils import (
    CameraInfo,
    load_colmap_model,
    load_transforms_json,
    sequential_neighbors
)

__all__ = [
    'LineReconstructor',
    'Segment2D',
    'Segment3D',
    'Match',
    'Thresholds',
    'LineCluster3D',
    'FinalLine3D',
    'CameraInfo',
    'load_colmap_model',
    'load_transforms_json',
    'sequential_neighbors'
]

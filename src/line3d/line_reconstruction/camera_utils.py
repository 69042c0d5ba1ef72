"""
Camera loading utilities.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np
from scipy.spatial.transform import Rotation


logger = logging.getLogger(__name__)


@dataclass
class CameraInfo:
    """Calibration and landmark visibility of one image."""
    image_id: int
    name: str
    K: np.ndarray
    R: np.ndarray
    t: np.ndarray
    width: int
    height: int
    worldpoints: List[int] = field(default_factory=list)
    median_depth: float = 0.0

    @property
    def C(self) -> np.ndarray:
        return -self.R.T @ self.t


def intrinsics_from_colmap(model: str, params: List[float]) -> Optional[np.ndarray]:
    """Pinhole intrinsic matrix for the COLMAP camera models we support."""
    if model in ('SIMPLE_PINHOLE', 'SIMPLE_RADIAL', 'RADIAL') and len(params) >= 3:
        f, cx, cy = params[:3]
        fx = fy = f
    elif model in ('PINHOLE', 'OPENCV', 'FULL_OPENCV') and len(params) >= 4:
        fx, fy, cx, cy = params[:4]
    else:
        return None

    return np.array([
        [fx, 0, cx],
        [0, fy, cy],
        [0, 0, 1]
    ], dtype=np.float64)


def load_colmap_points(points_file: str) -> Dict[int, np.ndarray]:
    """Load 3D point positions from COLMAP points3D.txt."""
    points = {}

    with open(points_file, 'r') as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#'):
                continue

            parts = line.split()
            points[int(parts[0])] = np.array([float(p) for p in parts[1:4]])

    return points


def load_colmap_model(model_dir: str) -> Dict[int, CameraInfo]:
    """
    Load cameras from a COLMAP text model.

    Reads cameras.txt and images.txt; the POINT3D_IDs observed by each image
    become its world point list. If points3D.txt exists, the median depth of
    the observed points is computed per image.

    Args:
        model_dir: Directory containing the COLMAP text files

    Returns:
        Dictionary mapping image_id to CameraInfo
    """
    model_path = Path(model_dir)
    cameras_file = model_path / 'cameras.txt'
    images_file = model_path / 'images.txt'
    points_file = model_path / 'points3D.txt'

    if not cameras_file.exists() or not images_file.exists():
        raise FileNotFoundError(f"COLMAP text model not found in {model_dir}")

    # Parse cameras.txt to get intrinsics
    cameras_intrinsics: Dict[int, Tuple[np.ndarray, int, int]] = {}

    with open(cameras_file, 'r') as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#'):
                continue

            parts = line.split()
            camera_id = int(parts[0])
            model = parts[1]
            width = int(parts[2])
            height = int(parts[3])
            params = [float(p) for p in parts[4:]]

            K = intrinsics_from_colmap(model, params)
            if K is None:
                logger.warning("camera model %s not supported (camera %d)", model, camera_id)
                continue

            cameras_intrinsics[camera_id] = (K, width, height)

    points3d = load_colmap_points(str(points_file)) if points_file.exists() else {}

    # Parse images.txt to get extrinsics
    cameras = {}

    with open(images_file, 'r') as f:
        lines = [line.rstrip('\n') for line in f if not line.startswith('#')]

    # Images.txt has pairs of lines: image info and points
    for i in range(0, len(lines) - 1, 2):
        parts = lines[i].split()
        if len(parts) < 10:
            continue

        image_id = int(parts[0])
        qw, qx, qy, qz = [float(p) for p in parts[1:5]]
        tx, ty, tz = [float(p) for p in parts[5:8]]
        camera_id = int(parts[8])
        name = parts[9]

        if camera_id not in cameras_intrinsics:
            continue

        # COLMAP uses quaternion as [w, x, y, z]
        R = Rotation.from_quat([qx, qy, qz, qw]).as_matrix()
        t = np.array([tx, ty, tz])
        K, width, height = cameras_intrinsics[camera_id]

        # POINTS2D[] as (X, Y, POINT3D_ID)
        obs = lines[i + 1].split()
        worldpoints = []
        for j in range(2, len(obs), 3):
            wp_id = int(obs[j])
            if wp_id >= 0:
                worldpoints.append(wp_id)

        info = CameraInfo(image_id, name, K, R, t, width, height, worldpoints)

        if points3d:
            depths = [float((R @ points3d[wp] + t)[2]) for wp in worldpoints if wp in points3d]
            depths = [d for d in depths if d > 0]
            if depths:
                info.median_depth = float(np.median(depths))

        cameras[image_id] = info

    return cameras


def load_transforms_json(transforms_file: str) -> Dict[int, CameraInfo]:
    """
    Load cameras from transforms.json (NeRF/3DGS format).

    The file carries no landmarks, so the returned cameras have empty world
    point lists and need explicit neighbors.

    Args:
        transforms_file: Path to transforms.json file

    Returns:
        Dictionary mapping frame index to CameraInfo
    """
    with open(transforms_file, 'r') as f:
        data = json.load(f)

    w = int(data.get('w', 800))
    h = int(data.get('h', 800))

    # Get camera intrinsics
    if 'fl_x' in data:
        fx = data['fl_x']
        fy = data.get('fl_y', fx)
        cx = data.get('cx', w / 2)
        cy = data.get('cy', h / 2)
    elif 'camera_angle_x' in data:
        angle_x = data['camera_angle_x']
        fx = w / (2 * np.tan(angle_x / 2))
        fy = fx
        cx = w / 2
        cy = h / 2
    else:
        raise ValueError(f"No intrinsics found in {transforms_file}")

    K = np.array([
        [fx, 0, cx],
        [0, fy, cy],
        [0, 0, 1]
    ], dtype=np.float64)

    # NeRF camera frame (x right, y up, z back) -> OpenCV (x right, y down, z forward)
    flip = np.diag([1.0, -1.0, -1.0])

    cameras = {}
    for frame_id, frame in enumerate(data['frames']):
        # Transform matrix is camera-to-world (4x4)
        c2w = np.array(frame['transform_matrix'], dtype=np.float64)

        R_c2w = c2w[:3, :3] @ flip
        R_w2c = R_c2w.T
        t_w2c = -R_w2c @ c2w[:3, 3]

        name = Path(frame.get('file_path', f'{frame_id}')).name
        cameras[frame_id] = CameraInfo(frame_id, name, K, R_w2c, t_w2c, w, h)

    return cameras


def sequential_neighbors(ids: List[int], num_neighbors: int) -> Dict[int, List[int]]:
    """Neighbors by position in a sequence (for data without landmarks)."""
    ids = sorted(ids)
    neighbors = {}
    for idx, image_id in enumerate(ids):
        half = max(num_neighbors // 2, 1)
        lo = max(idx - half, 0)
        hi = min(idx + half + 1, len(ids))
        neighbors[image_id] = [ids[j] for j in range(lo, hi) if j != idx]
    return neighbors

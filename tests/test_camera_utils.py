import json

import numpy as np
import pytest

from line3d.line_reconstruction.camera_utils import (
    intrinsics_from_colmap, load_colmap_model, load_transforms_json, sequential_neighbors
)


CAMERAS_TXT = """# Camera list with one line of data per camera:
#   CAMERA_ID, MODEL, WIDTH, HEIGHT, PARAMS[]
1 PINHOLE 640 480 500 510 320 240
2 SIMPLE_RADIAL 800 600 700 400 300 0.01
3 FISHEYE_UNSUPPORTED 640 480 1 2 3 4
"""

IMAGES_TXT = """# Image list with two lines of data per image:
#   IMAGE_ID, QW, QX, QY, QZ, TX, TY, TZ, CAMERA_ID, NAME
#   POINTS2D[] as (X, Y, POINT3D_ID)
1 1 0 0 0 0 0 0 1 a.png
10 20 11 30 40 -1 50 60 12
2 1 0 0 0 -1 0 0 2 b.png
10 20 11 30 40 13
3 1 0 0 0 0 0 0 3 c.png
10 20 11
"""

POINTS_TXT = """# 3D point list
11 0 0 4 255 255 255 0.1
12 0 0 6 255 255 255 0.1
13 1 0 8 255 255 255 0.1
"""


@pytest.fixture
def colmap_dir(tmp_path):
    (tmp_path / 'cameras.txt').write_text(CAMERAS_TXT)
    (tmp_path / 'images.txt').write_text(IMAGES_TXT)
    (tmp_path / 'points3D.txt').write_text(POINTS_TXT)
    return tmp_path


def test_intrinsics_from_colmap():
    K = intrinsics_from_colmap('SIMPLE_PINHOLE', [500, 320, 240])
    assert np.allclose(K, [[500, 0, 320], [0, 500, 240], [0, 0, 1]])
    assert intrinsics_from_colmap('PINHOLE', [500, 320]) is None
    assert intrinsics_from_colmap('THIN_PRISM_FISHEYE', [1] * 12) is None


def test_load_colmap_model(colmap_dir):
    cameras = load_colmap_model(str(colmap_dir))

    # image 3 uses an unsupported camera model
    assert sorted(cameras) == [1, 2]

    cam = cameras[1]
    assert cam.name == 'a.png'
    assert (cam.width, cam.height) == (640, 480)
    assert np.allclose(cam.K, [[500, 0, 320], [0, 510, 240], [0, 0, 1]])
    assert np.allclose(cam.R, np.eye(3))
    assert cam.worldpoints == [11, 12]
    assert cam.median_depth == pytest.approx(5.0)

    cam = cameras[2]
    assert np.allclose(cam.K, [[700, 0, 400], [0, 700, 300], [0, 0, 1]])
    assert np.allclose(cam.C, [1.0, 0.0, 0.0])
    assert cam.worldpoints == [11, 13]


def test_load_colmap_model_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_colmap_model(str(tmp_path))


def test_load_transforms_json(tmp_path):
    c2w = np.eye(4)
    c2w[:3, 3] = [1.0, 2.0, 3.0]
    data = {
        'w': 400, 'h': 300, 'fl_x': 350.0, 'cx': 200.0, 'cy': 150.0,
        'frames': [{'file_path': './images/frame_000.png', 'transform_matrix': c2w.tolist()}]
    }
    path = tmp_path / 'transforms.json'
    path.write_text(json.dumps(data))

    cameras = load_transforms_json(str(path))

    cam = cameras[0]
    assert cam.name == 'frame_000.png'
    assert np.allclose(cam.K, [[350, 0, 200], [0, 350, 150], [0, 0, 1]])
    # camera looks down -z in the NeRF convention
    assert np.allclose(cam.R, np.diag([1.0, -1.0, -1.0]))
    assert np.allclose(cam.C, [1.0, 2.0, 3.0])
    assert cam.worldpoints == []


def test_load_transforms_json_without_intrinsics(tmp_path):
    path = tmp_path / 'transforms.json'
    path.write_text(json.dumps({'frames': []}))

    with pytest.raises(ValueError):
        load_transforms_json(str(path))


def test_sequential_neighbors():
    neighbors = sequential_neighbors([3, 1, 2, 0], 2)

    assert neighbors[0] == [1]
    assert neighbors[1] == [0, 2]
    assert neighbors[3] == [2]

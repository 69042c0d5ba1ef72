from types import SimpleNamespace

import numpy as np
import pytest

from line3d.line_reconstruction import LineReconstructor
from line3d.line_reconstruction.view import View


K = np.array([
    [500.0, 0.0, 320.0],
    [0.0, 500.0, 240.0],
    [0.0, 0.0, 1.0]
])
WIDTH, HEIGHT = 640, 480

# cameras looking along +z, translated in the xy plane
CENTERS = [(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (1.0, 1.0, 0.0)]

# two lines at depth 5; in view 0 they project to
# (200, 100)-(260, 220) and (450, 250)-(510, 370)
LINES = [
    (np.array([-1.2, -1.4, 5.0]), np.array([-0.6, -0.2, 5.0])),
    (np.array([1.3, 0.1, 5.0]), np.array([1.9, 1.3, 5.0])),
]


def camera(center):
    R = np.eye(3)
    t = -R @ np.asarray(center, dtype=np.float64)
    return R, t


def project(center, X):
    R, t = camera(center)
    x = K @ (R @ X + t)
    return x[:2] / x[2]


def project_segments(center, lines):
    return np.array([np.concatenate([project(center, P1), project(center, P2)])
                     for P1, P2 in lines])


@pytest.fixture
def scene():
    return SimpleNamespace(
        K=K, width=WIDTH, height=HEIGHT, centers=CENTERS, lines=LINES,
        camera=camera, project=project, project_segments=project_segments
    )


@pytest.fixture
def make_view():
    def _make(view_id, center, lines=LINES):
        R, t = camera(center)
        return View(view_id, project_segments(center, lines), K, R, t, WIDTH, HEIGHT)
    return _make


@pytest.fixture
def scene_views(make_view):
    views = {i: make_view(i, c) for i, c in enumerate(CENTERS)}
    for view in views.values():
        view.compute_spatial_regularizer(2.5)
    return views


@pytest.fixture
def reconstructor():
    rec = LineReconstructor(num_threads=1)
    for view_id, center in enumerate(CENTERS):
        R, t = camera(center)
        added = rec.add_image(view_id, K, R, t, range(20),
                              line_segments=project_segments(center, LINES),
                              image_size=(WIDTH, HEIGHT))
        assert added
    return rec

import threading

import numpy as np
import pytest

from line3d.line_reconstruction import LineReconstructor
from line3d.line_reconstruction.clustering import TorchReplicatorDiffusion


def endpoints_match(seg, line, tol=1e-4):
    P1, P2 = line
    return ((np.allclose(seg.P1, P1, atol=tol) and np.allclose(seg.P2, P2, atol=tol)) or
            (np.allclose(seg.P1, P2, atol=tol) and np.allclose(seg.P2, P1, atol=tol)))


def assert_recovers_scene(lines3d, scene):
    assert len(lines3d) == 2
    for line in lines3d:
        assert len(line.collinear_segments) == 1
        seg = line.collinear_segments[0]
        line_id = line.underlying_cluster.corresponding_seg2d.seg_id
        assert endpoints_match(seg, scene.lines[line_id])


def test_add_image_rejects_duplicates(scene, reconstructor):
    R, t = scene.camera(scene.centers[0])
    num_lines = reconstructor.num_lines_total

    added = reconstructor.add_image(0, scene.K, R, t, range(20),
                                    line_segments=np.array([[0.0, 0.0, 50.0, 50.0]]),
                                    image_size=(scene.width, scene.height))

    assert not added
    assert reconstructor.num_lines_total == num_lines
    assert len(reconstructor.views) == 4


def test_add_image_rejects_bad_input(scene):
    rec = LineReconstructor(num_threads=1)
    R, t = scene.camera(scene.centers[0])
    segments = scene.project_segments(scene.centers[0], scene.lines)

    assert not rec.add_image(0, scene.K, R, t, [], line_segments=segments,
                             image_size=(scene.width, scene.height))
    assert not rec.add_image(0, scene.K, R, t, [1, 2], line_segments=segments)
    assert not rec.add_image(0, scene.K, R, t, [1, 2], line_segments=np.zeros((0, 4)),
                             image_size=(scene.width, scene.height))
    assert len(rec.views) == 0


def test_add_image_detects_segments(scene):
    class FixedDetector:
        def __init__(self):
            self.calls = []

        def detect(self, view_id, image):
            self.calls.append(view_id)
            return scene.project_segments(scene.centers[0], scene.lines)

    detector = FixedDetector()
    rec = LineReconstructor(line_detector=detector, num_threads=1)
    R, t = scene.camera(scene.centers[0])

    image = np.zeros((scene.height, scene.width), dtype=np.uint8)
    assert rec.add_image(5, scene.K, R, t, [1, 2], image=image)
    assert detector.calls == [5]
    assert rec.views[5].num_lines == 2
    assert rec.views[5].width == scene.width


def test_match_images(reconstructor):
    reconstructor.match_images()

    assert len(reconstructor.estimated_position3d) == 8
    for view_id in range(4):
        assert reconstructor.processed[view_id]
        assert sorted(reconstructor.visual_neighbors[view_id]) == sorted({0, 1, 2, 3} - {view_id})
        assert reconstructor.num_matches[view_id] == 6
        assert 5.0 < reconstructor.views[view_id].median_depth < 6.0
        for seg_id, matches in enumerate(reconstructor.matches[view_id]):
            assert sorted(m.tgt_view for m in matches) == sorted({0, 1, 2, 3} - {view_id})
            assert all(m.tgt_seg == seg_id for m in matches)


def test_reconstruct_3d_lines(scene, reconstructor):
    reconstructor.match_images()
    reconstructor.reconstruct_3d_lines()

    assert len(reconstructor.clusters3d) == 2
    for cluster in reconstructor.clusters3d:
        assert len(cluster) == 4
        assert {seg.view_id for seg in cluster.residuals} == {0, 1, 2, 3}

    assert_recovers_scene(reconstructor.get_3d_lines(), scene)


def test_three_noisy_views(scene):
    noise = np.array([
        [0.1, -0.1, 0.05, 0.08],
        [-0.08, 0.06, -0.1, 0.02],
        [0.03, 0.1, -0.06, -0.09],
    ])
    # baselines along x, well away from the direction of the line
    centers = [(-1.0, 0.0, 0.0), (0.0, 0.0, 0.0), (1.0, 0.0, 0.0)]
    rec = LineReconstructor(num_threads=1)
    for view_id, center in enumerate(centers):
        R, t = scene.camera(center)
        segments = scene.project_segments(center, scene.lines[:1]) + noise[view_id]
        assert rec.add_image(view_id, scene.K, R, t, range(20), line_segments=segments,
                             image_size=(scene.width, scene.height))

    rec.match_images()
    rec.reconstruct_3d_lines()

    assert len(rec.clusters3d) == 1
    assert {seg.view_id for seg in rec.clusters3d[0].residuals} == {0, 1, 2}

    lines3d = rec.get_3d_lines()
    assert len(lines3d) == 1
    assert len(lines3d[0].collinear_segments) == 1
    assert endpoints_match(lines3d[0].collinear_segments[0], scene.lines[0], tol=0.02)


def test_reconstruct_with_collinearity_and_optimizer(scene, reconstructor):
    reconstructor.match_images()
    reconstructor.reconstruct_3d_lines(collinearity_t=2.0, use_optimizer=True)

    assert reconstructor.collinearity_t == 2.0
    assert_recovers_scene(reconstructor.get_3d_lines(), scene)


def test_reconstruct_with_diffusion(scene):
    rec = LineReconstructor(num_threads=2,
                            diffusion_backend=TorchReplicatorDiffusion(device='cpu'))
    for view_id, center in enumerate(scene.centers):
        R, t = scene.camera(center)
        rec.add_image(view_id, scene.K, R, t, range(20),
                      line_segments=scene.project_segments(center, scene.lines),
                      image_size=(scene.width, scene.height))

    rec.match_images()
    rec.reconstruct_3d_lines(perform_diffusion=True)

    assert_recovers_scene(rec.get_3d_lines(), scene)


def test_isolated_view_is_not_matched(scene, reconstructor):
    R, t = scene.camera((0.5, 0.5, 0.0))
    segments = scene.project_segments((0.5, 0.5, 0.0), scene.lines)
    assert reconstructor.add_image(4, scene.K, R, t, [1000, 1001],
                                   line_segments=segments,
                                   image_size=(scene.width, scene.height))

    reconstructor.match_images()
    reconstructor.reconstruct_3d_lines()

    assert reconstructor.visual_neighbors[4] == []
    assert reconstructor.num_matches[4] == 0
    for cluster in reconstructor.clusters3d:
        assert 4 not in {seg.view_id for seg in cluster.residuals}
    assert_recovers_scene(reconstructor.get_3d_lines(), scene)


def test_visibility_threshold(reconstructor):
    reconstructor.match_images()
    reconstructor.reconstruct_3d_lines(visibility_t=5)

    assert reconstructor.clusters3d == []
    assert reconstructor.get_3d_lines() == []


def test_reconstruct_before_matching(reconstructor):
    reconstructor.reconstruct_3d_lines()
    assert reconstructor.get_3d_lines() == []


def test_fixed_neighbors(scene):
    rec = LineReconstructor(neighbors_by_worldpoints=False, num_threads=1)
    for view_id, center in enumerate(scene.centers):
        R, t = scene.camera(center)
        neighbors = [n for n in range(4) if n != view_id]
        rec.add_image(view_id, scene.K, R, t, neighbors,
                      line_segments=scene.project_segments(center, scene.lines),
                      image_size=(scene.width, scene.height))

    rec.match_images()
    rec.reconstruct_3d_lines()

    assert_recovers_scene(rec.get_3d_lines(), scene)


def test_fixed_world_regularizer(scene, reconstructor):
    reconstructor.match_images(sigma_position=-0.05)

    assert reconstructor.fixed_3d_regularizer
    for view in reconstructor.views.values():
        assert view.median_sigma == pytest.approx(0.05)

    reconstructor.reconstruct_3d_lines()
    assert_recovers_scene(reconstructor.get_3d_lines(), scene)


class CountingLock:
    def __init__(self):
        self._lock = threading.Lock()
        self.acquired = 0

    def __enter__(self):
        self._lock.acquire()
        self.acquired += 1
        return self

    def __exit__(self, *exc):
        self._lock.release()


def test_estimated_positions_have_their_own_lock(reconstructor):
    assert reconstructor._best_match_lock is not reconstructor._match_lock

    best_match_lock = CountingLock()
    reconstructor._best_match_lock = best_match_lock
    reconstructor.match_images()

    # one critical section per filtered view
    assert best_match_lock.acquired == 4
    assert len(reconstructor.estimated_position3d) == 8
    assert len(reconstructor.entry_map) == 8


def line_endpoints(lines3d):
    return sorted(tuple(np.round(np.hstack([seg.P1, seg.P2]), 6))
                  for line in lines3d for seg in line.collinear_segments)


def test_rerun_gives_same_result(scene, reconstructor):
    reconstructor.match_images()
    reconstructor.reconstruct_3d_lines()
    first_matches = dict(reconstructor.num_matches)
    first_lines = line_endpoints(reconstructor.get_3d_lines())

    # different parameters in between
    reconstructor.match_images(sigma_position=5.0, knn=1)
    reconstructor.reconstruct_3d_lines(visibility_t=5)
    assert reconstructor.get_3d_lines() == []

    reconstructor.match_images()
    reconstructor.reconstruct_3d_lines()

    assert reconstructor.num_matches == first_matches
    assert len(reconstructor.estimated_position3d) == 8
    assert len(reconstructor.clusters3d) == 2
    assert np.allclose(line_endpoints(reconstructor.get_3d_lines()), first_lines, atol=1e-6)
    assert_recovers_scene(reconstructor.get_3d_lines(), scene)

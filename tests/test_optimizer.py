import numpy as np

from line3d.line_reconstruction.geometry import LineCluster3D, Segment2D, Segment3D
from line3d.line_reconstruction.optimizer import LineOptimizer, line_reprojection_residuals


def make_cluster(P1, P2):
    return LineCluster3D(Segment3D(P1, P2), Segment2D(0, 0),
                         [Segment2D(i, 0) for i in range(4)])


def test_residuals_vanish_on_true_line(scene, scene_views):
    P1, P2 = scene.lines[0]
    cluster = make_cluster(P1, P2)

    residuals = line_reprojection_residuals(np.concatenate([P1, P2]), cluster, scene_views)

    assert residuals.shape == (8,)
    assert np.abs(residuals).max() < 1e-6


def test_optimizer_refines_perturbed_line(scene, scene_views):
    P1, P2 = scene.lines[0]
    offset = np.array([0.05, -0.03, 0.1])
    cluster = make_cluster(P1 + offset, P2 - offset)

    before = np.abs(line_reprojection_residuals(
        np.concatenate([cluster.seg3d.P1, cluster.seg3d.P2]), cluster, scene_views)).max()

    num_refined = LineOptimizer(scene_views, max_iter=200).optimize([cluster])

    after = np.abs(line_reprojection_residuals(
        np.concatenate([cluster.seg3d.P1, cluster.seg3d.P2]), cluster, scene_views)).max()

    assert num_refined == 1
    assert after < before
    assert after < 0.1
    assert cluster.seg3d.distance_point_to_line(P1) < 0.01
    assert cluster.seg3d.distance_point_to_line(P2) < 0.01

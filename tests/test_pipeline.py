import cv2
import numpy as np
import pytest

from line3d.pipeline import Pipeline


@pytest.fixture
def dataset(tmp_path, scene):
    image_dir = tmp_path / 'images'
    model_dir = tmp_path / 'sparse'
    image_dir.mkdir()
    model_dir.mkdir()

    (model_dir / 'cameras.txt').write_text(
        f"1 PINHOLE {scene.width} {scene.height} 500 500 320 240\n"
    )

    observations = " ".join(f"0 0 {wp}" for wp in range(1, 11))
    images = []
    for view_id, center in enumerate(scene.centers):
        tx, ty, tz = -np.asarray(center)
        images.append(f"{view_id} 1 0 0 0 {tx} {ty} {tz} 1 view_{view_id}.png")
        images.append(observations)
        cv2.imwrite(str(image_dir / f'view_{view_id}.png'),
                    np.zeros((scene.height, scene.width, 3), dtype=np.uint8))
    (model_dir / 'images.txt').write_text("\n".join(images) + "\n")

    points = [f"{wp} 0.5 0.5 5 0 0 0 0.1" for wp in range(1, 11)]
    (model_dir / 'points3D.txt').write_text("\n".join(points) + "\n")

    return image_dir, model_dir


def fake_detect(scene):
    def detect(view_id, image):
        return scene.project_segments(scene.centers[view_id], scene.lines)
    return detect


def test_unsupported_detector():
    with pytest.raises(ValueError):
        Pipeline({'line_detector': {'type': 'hough'}})


def test_load_cameras(dataset):
    _, model_dir = dataset
    cameras = Pipeline().load_cameras(str(model_dir / 'images.txt'))

    assert sorted(cameras) == [0, 1, 2, 3]
    assert cameras[1].worldpoints == list(range(1, 11))
    assert cameras[0].median_depth == pytest.approx(5.0)


def test_run_full_pipeline(tmp_path, dataset, scene, monkeypatch):
    image_dir, model_dir = dataset
    pipeline = Pipeline({'runtime': {'num_threads': 2},
                         'output': {'save_stl': True}})
    monkeypatch.setattr(pipeline.line_detector, 'detect', fake_detect(scene))

    output_dir = tmp_path / 'output'
    results = pipeline.run_full_pipeline(str(image_dir), str(model_dir), str(output_dir))

    assert len(results['views']) == 4
    assert len(results['lines3d']) == 2
    assert len((output_dir / 'lines3d.txt').read_text().splitlines()) == 2
    assert (output_dir / 'lines3d.obj').exists()
    assert (output_dir / 'lines3d.stl').exists()


def test_add_views_without_worldpoints(dataset, scene, monkeypatch):
    image_dir, model_dir = dataset
    pipeline = Pipeline()
    monkeypatch.setattr(pipeline.line_detector, 'detect', fake_detect(scene))

    cameras = pipeline.load_cameras(str(model_dir))
    for cam in cameras.values():
        cam.worldpoints = []

    assert pipeline.add_views(str(image_dir), cameras) == 4
    assert not pipeline.line_reconstructor.neighbors_by_worldpoints
    assert pipeline.line_reconstructor.neighbor_selector.fixed_neighbors[0] == [1, 2, 3]

import numpy as np

from line3d.line_reconstruction.geometry import FinalLine3D, LineCluster3D, Segment2D, Segment3D
from line3d.utils.export import export_results, lines_to_array, save_obj, save_stl, save_txt


def make_lines():
    cluster = LineCluster3D(Segment3D([0, 0, 5], [1, 0, 5]), Segment2D(0, 0),
                            [Segment2D(0, 0), Segment2D(1, 1)])
    return [FinalLine3D([Segment3D([0, 0, 5], [0.4, 0, 5]),
                         Segment3D([0.6, 0, 5], [1, 0, 5])], cluster)]


def test_lines_to_array():
    segments = lines_to_array(make_lines())

    assert segments.shape == (2, 6)
    assert np.allclose(segments[1], [0.6, 0, 5, 1, 0, 5])
    assert lines_to_array([]).shape == (0, 6)


def test_save_txt(tmp_path, scene_views):
    path = tmp_path / 'lines.txt'
    save_txt(make_lines(), scene_views, str(path))

    rows = path.read_text().splitlines()
    assert len(rows) == 1

    tokens = rows[0].split()
    # 2 segments, 2 x 6 coordinates, 2 residuals, 2 x (view, segment, 4 coordinates)
    assert len(tokens) == 1 + 12 + 1 + 12
    assert tokens[0] == '2'
    assert tokens[13] == '2'
    assert tokens[14:16] == ['0', '0']
    assert tokens[20:22] == ['1', '1']
    assert float(tokens[16]) == np.round(scene_views[0].segments[0, 0], 3)


def test_save_obj(tmp_path):
    path = tmp_path / 'lines.obj'
    save_obj(make_lines(), str(path))

    rows = path.read_text().splitlines()
    assert sum(r.startswith('v ') for r in rows) == 4
    assert [r for r in rows if r.startswith('l ')] == ['l 1 2', 'l 3 4']


def test_save_stl(tmp_path):
    path = tmp_path / 'lines.stl'
    save_stl(make_lines(), str(path))

    text = path.read_text()
    assert text.startswith('solid lines3d')
    assert text.count('facet normal') == 2
    assert text.count('vertex') == 6


def test_export_results(tmp_path, scene_views):
    output = tmp_path / 'out'
    written = export_results(make_lines(), scene_views, str(output),
                             {'save_txt': True, 'save_obj': False, 'save_stl': True})

    assert sorted(p.split('/')[-1] for p in written) == ['lines3d.stl', 'lines3d.txt']
    assert (output / 'lines3d.txt').exists()
    assert not (output / 'lines3d.obj').exists()

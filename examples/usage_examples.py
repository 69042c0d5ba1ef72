"""
Example script demonstrating how to use the line3d pipeline programmatically.
"""

import numpy as np

from line3d import LineReconstructor, Pipeline
from line3d.utils import lines_to_array, save_obj


def example_basic_usage():
    """Basic usage example."""

    # Only the values that differ from the defaults are needed
    config = {
        'line_detector': {
            'type': 'lsd',
            'max_image_width': 1600,
            'max_line_segments': 2000
        },
        'matching': {
            'num_neighbors': 8,
            'sigma_position': 2.5,
            'sigma_angle': 10.0
        },
        'reconstruction': {
            'visibility_t': 3,
            'collinearity_t': 2.0,
            'use_optimizer': True
        },
        'runtime': {
            'num_threads': 8,
            'diffusion_device': 'cuda'
        },
        'output': {
            'save_ply': True,
            'save_plot': True
        }
    }

    pipeline = Pipeline(config)

    # Note: Replace these paths with actual data
    results = pipeline.run_full_pipeline(
        image_dir='data/images',
        camera_path='data/sparse/0',  # or transforms.json
        output_dir='output/example'
    )

    print(f"Added {len(results['views'])} views")
    print(f"Found {len(results['clusters3d'])} line clusters")
    print(f"Reconstructed {len(results['lines3d'])} 3D lines")

    return results


def example_step_by_step():
    """Step-by-step usage example with more control."""

    pipeline = Pipeline({'reconstruction': {'perform_diffusion': True}})

    cameras = pipeline.load_cameras('data/transforms.json')
    num_views = pipeline.add_views('data/images', cameras)
    print(f"Added {num_views} of {len(cameras)} cameras")

    lines3d = pipeline.reconstruct_3d_lines()
    pipeline.save_results(lines3d, 'output/step_by_step')

    return lines3d


def example_synthetic_scene():
    """Drive LineReconstructor directly with projected segments."""

    K = np.array([[500.0, 0, 320], [0, 500.0, 240], [0, 0, 1]])
    lines = [
        (np.array([-1.2, -1.4, 5.0]), np.array([-0.6, -0.2, 5.0])),
        (np.array([1.3, 0.1, 5.0]), np.array([1.9, 1.3, 5.0])),
    ]
    centers = [(0, 0, 0), (1, 0, 0), (0, 1, 0), (1, 1, 0)]

    def project(C, X):
        x = K @ (X - C)
        return x[:2] / x[2]

    reconstructor = LineReconstructor(num_threads=2)
    for view_id, center in enumerate(centers):
        C = np.asarray(center, dtype=float)
        segments = np.array([np.hstack([project(C, P1), project(C, P2)]) for P1, P2 in lines])
        # every view sees the same world points, so all views are neighbors
        reconstructor.add_image(view_id, K, np.eye(3), -C, range(20),
                                line_segments=segments, image_size=(640, 480))

    reconstructor.match_images(sigma_position=2.5, sigma_angle=10.0)
    reconstructor.reconstruct_3d_lines(visibility_t=3)

    lines3d = reconstructor.get_3d_lines()
    print(lines_to_array(lines3d))
    save_obj(lines3d, 'synthetic_lines.obj')

    return lines3d


if __name__ == '__main__':
    print("line3d usage examples")
    print("=" * 50)

    print("\nRunning the synthetic example...")
    example_synthetic_scene()

    print("\nThe other examples need real data:")
    print("  - example_basic_usage()")
    print("  - example_step_by_step()")

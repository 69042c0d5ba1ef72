"""
Main pipeline for 3D line reconstruction.

This module provides the end-to-end pipeline for:
1. Loading calibrated cameras (COLMAP text model or transforms.json)
2. Detecting 2D line segments in the images
3. Matching, scoring and clustering the segments into 3D lines
4. Exporting the reconstructed lines
"""

import logging
from pathlib import Path
from typing import Dict, Optional

import cv2
import numpy as np
from tqdm import tqdm

from .config import DEFAULT_CONFIG, merge_config
from .line_detection import ImageLoader, LSDLineDetector, undistort_image
from .line_reconstruction import (
    CameraInfo, LineReconstructor, Thresholds,
    load_colmap_model, load_transforms_json, sequential_neighbors
)
from .line_reconstruction.clustering import TorchReplicatorDiffusion
from .utils import (
    draw_lines_on_image, export_results, plot_line_statistics,
    save_line_set, visualize_3d_lines
)


logger = logging.getLogger(__name__)


class Pipeline:
    """
    Main pipeline for reconstructing 3D lines from a calibrated image set.
    """

    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize pipeline with configuration.

        Args:
            config: Configuration dictionary, merged over the defaults
        """
        self.config = merge_config(DEFAULT_CONFIG, config)

        self.line_detector = None
        self.line_reconstructor = None

        self._setup_components()

    def _setup_components(self):
        """Setup pipeline components from config."""
        detector_config = self.config['line_detector']
        detector_type = detector_config.get('type', 'lsd')

        if detector_type == 'lsd':
            self.line_detector = LSDLineDetector(
                max_image_width=detector_config['max_image_width'],
                max_line_segments=detector_config['max_line_segments'],
                min_length_factor=detector_config['min_length_factor'],
                cache_dir=detector_config.get('cache_dir')
            )
        else:
            raise ValueError(f"Unsupported detector type: {detector_type}")

        self.line_reconstructor = self._make_reconstructor(
            self.config['matching']['neighbors_by_worldpoints']
        )

    def _make_reconstructor(self, neighbors_by_worldpoints: bool) -> LineReconstructor:
        threshold_config = self.config['thresholds']
        thresholds = Thresholds(
            min_similarity_3d=threshold_config['min_similarity_3d'],
            min_affinity=threshold_config['min_affinity'],
            min_score_3d=threshold_config['min_score_3d'],
            min_best_score_3d=threshold_config['min_best_score_3d'],
            min_line_length_factor=self.config['line_detector']['min_length_factor'],
            clustering_scale=threshold_config['clustering_scale']
        )

        runtime_config = self.config['runtime']
        return LineReconstructor(
            neighbors_by_worldpoints=neighbors_by_worldpoints,
            line_detector=self.line_detector,
            thresholds=thresholds,
            num_threads=runtime_config['num_threads'],
            diffusion_backend=TorchReplicatorDiffusion(device=runtime_config['diffusion_device'])
        )

    def load_cameras(self, camera_path: str) -> Dict[int, CameraInfo]:
        """
        Load calibrated cameras.

        Args:
            camera_path: COLMAP text model directory (or a file inside it),
                or a transforms.json file

        Returns:
            Dictionary mapping view id to CameraInfo
        """
        path = Path(camera_path)

        if path.suffix == '.json':
            cameras = load_transforms_json(str(path))
        else:
            model_dir = path if path.is_dir() else path.parent
            cameras = load_colmap_model(str(model_dir))

        logger.info("loaded %d cameras from %s", len(cameras), camera_path)
        return cameras

    def add_views(self, image_dir: str, cameras: Dict[int, CameraInfo],
                  output_dir: Optional[str] = None) -> int:
        """
        Detect segments in every image with a known camera and add the views.

        Args:
            image_dir: Directory containing the images
            cameras: Cameras returned by load_cameras
            output_dir: Optional directory for detection overlays

        Returns:
            Number of views added
        """
        loader = ImageLoader(image_dir)
        image_files = loader.get_image_files()
        by_stem = {Path(name).stem: name for name in image_files}

        use_worldpoints = self.config['matching']['neighbors_by_worldpoints']
        if use_worldpoints and not any(cam.worldpoints for cam in cameras.values()):
            logger.warning("cameras carry no worldpoints! using sequential neighbors instead...")
            use_worldpoints = False

        if use_worldpoints != self.line_reconstructor.neighbors_by_worldpoints:
            self.line_reconstructor = self._make_reconstructor(use_worldpoints)

        neighbors = None
        if not use_worldpoints:
            neighbors = sequential_neighbors(list(cameras), self.config['matching']['num_neighbors'])

        undistortion = self.config['undistortion']
        overlay_path = None
        if output_dir is not None and self.config['output'].get('save_plot', False):
            overlay_path = Path(output_dir) / 'detections'
            overlay_path.mkdir(parents=True, exist_ok=True)

        num_added = 0
        for view_id, cam in tqdm(sorted(cameras.items()), desc="Adding images"):
            name = cam.name if cam.name in image_files else by_stem.get(Path(cam.name).stem)
            if name is None:
                logger.warning("no image found for camera [%s] (%s)", view_id, cam.name)
                continue

            image = loader.load_image(name)
            if image is None:
                continue

            if undistortion.get('enable', False):
                image = undistort_image(image, cam.K, undistortion['radial'],
                                        undistortion['tangential'])

            ids = cam.worldpoints if use_worldpoints else neighbors[view_id]
            added = self.line_reconstructor.add_image(
                view_id, cam.K, cam.R, cam.t, ids,
                image=image, median_depth=cam.median_depth
            )

            if added:
                num_added += 1
                if overlay_path is not None and num_added <= 5:
                    segments = self.line_reconstructor.views[view_id].segments
                    cv2.imwrite(str(overlay_path / f'lines_{view_id}.jpg'),
                                draw_lines_on_image(image, segments))

        logger.info("added %d of %d views", num_added, len(cameras))
        return num_added

    def reconstruct_3d_lines(self):
        """Match the added views and cluster the matches into 3D lines."""
        matching = self.config['matching']
        self.line_reconstructor.match_images(
            sigma_position=matching['sigma_position'],
            sigma_angle=matching['sigma_angle'],
            num_neighbors=matching['num_neighbors'],
            epipolar_overlap=matching['epipolar_overlap'],
            min_baseline=matching['min_baseline'],
            knn=matching['knn']
        )

        reconstruction = self.config['reconstruction']
        self.line_reconstructor.reconstruct_3d_lines(
            visibility_t=reconstruction['visibility_t'],
            perform_diffusion=reconstruction['perform_diffusion'],
            collinearity_t=reconstruction['collinearity_t'],
            use_optimizer=reconstruction['use_optimizer'],
            max_iter_optimizer=reconstruction['max_iter_optimizer']
        )

        return self.line_reconstructor.get_3d_lines()

    def save_results(self, lines3d, output_dir: str):
        """Write the result files enabled in the output config."""
        output_config = self.config['output']
        views = self.line_reconstructor.views

        written = export_results(lines3d, views, output_dir, output_config)
        output_path = Path(output_dir)

        if output_config.get('save_ply', False):
            ply_file = str(output_path / 'lines3d.ply')
            if save_line_set(lines3d, ply_file):
                written.append(ply_file)

        if output_config.get('save_plot', False):
            centers = np.array([view.C for view in views.values()])
            visualize_3d_lines(lines3d, centers,
                               save_path=str(output_path / '3d_lines.png'))
            plot_line_statistics([view.segments for view in views.values()], lines3d,
                                 save_path=str(output_path / 'line_statistics.png'))

        for path in written:
            logger.info("saved %s", path)

    def run_full_pipeline(self,
                          image_dir: str,
                          camera_path: str,
                          output_dir: str = './output') -> Dict:
        """
        Run the full pipeline from images to 3D lines.

        Args:
            image_dir: Path to image directory
            camera_path: COLMAP model directory or transforms.json
            output_dir: Output directory for results

        Returns:
            Dictionary with results
        """
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        # Step 1: Load camera poses
        cameras = self.load_cameras(camera_path)

        # Step 2: Detect 2D lines and add views
        self.add_views(image_dir, cameras, output_dir=output_dir)

        # Step 3: Reconstruct 3D lines
        lines3d = self.reconstruct_3d_lines()

        # Step 4: Export
        self.save_results(lines3d, output_dir)

        logger.info("pipeline complete! results saved to %s", output_dir)

        return {
            'cameras': cameras,
            'views': self.line_reconstructor.views,
            'clusters3d': self.line_reconstructor.clusters3d,
            'lines3d': lines3d
        }

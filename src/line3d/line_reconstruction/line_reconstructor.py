"""
3D Line Reconstruction Module

This module reconstructs 3D lines from 2D line segments detected in multiple
calibrated views. Segments are matched across visual neighbors using
epipolar geometry, every match is scored by the 3D consistency of its
hypothesis with hypotheses from other views, and the best hypotheses are
clustered in an affinity graph. Each cluster becomes a 3D line, split into
the parts that are supported by at least three views.
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
from tqdm import tqdm

from .affinity import AffinityGraphBuilder
from .assembly import compute_final_lines, filter_tiny_segments, fit_line_cluster
from .clustering import (
    DiffusionBackend, TorchReplicatorDiffusion, group_clusters, perform_clustering
)
from .geometry import (
    EPS, EstimatedPosition, FinalLine3D, LineCluster3D, Match, Segment2D, Thresholds
)
from .matching import FundamentalMatrixCache, PairwiseMatcher
from .neighbors import NeighborSelector
from .optimizer import LineOptimizer
from .scoring import ConsistencyScorer, store_inverse_matches
from .view import View


logger = logging.getLogger(__name__)


class LineReconstructor:
    """
    Reconstruction session over a set of calibrated views.

    Typical use::

        rec = LineReconstructor()
        rec.add_image(0, K, R, t, worldpoints, line_segments=segs, image_size=(w, h))
        ...
        rec.match_images()
        rec.reconstruct_3d_lines()
        lines = rec.get_3d_lines()
    """

    def __init__(self,
                 neighbors_by_worldpoints: bool = True,
                 line_detector=None,
                 thresholds: Optional[Thresholds] = None,
                 num_threads: int = 4,
                 diffusion_backend: Optional[DiffusionBackend] = None):
        """
        Initialize reconstructor.

        Args:
            neighbors_by_worldpoints: Interpret the id list passed to add_image
                as observed world points (True) or as explicit neighbor views
            line_detector: Detector used when add_image gets no segments;
                must provide ``detect(view_id, image)``
            thresholds: Internal acceptance thresholds
            num_threads: Worker threads for per-segment stages
            diffusion_backend: Optional affinity diffusion
        """
        self.neighbors_by_worldpoints = neighbors_by_worldpoints
        self.line_detector = line_detector
        self.thresholds = thresholds or Thresholds()
        self.num_threads = max(int(num_threads), 1)
        self.diffusion_backend = diffusion_backend or TorchReplicatorDiffusion()

        self.views: Dict[int, View] = {}
        self.view_order: List[int] = []
        self.neighbor_selector = NeighborSelector()
        self.visual_neighbors: Dict[int, List[int]] = {}
        self.fundamentals = FundamentalMatrixCache()
        self.num_lines_total = 0

        # matching state
        self.matches: Dict[int, List[List[Match]]] = {}
        self.num_matches: Dict[int, int] = {}
        self.processed: Dict[int, bool] = {}
        self.matched: Dict[int, set] = {}
        self.estimated_position3d: List[EstimatedPosition] = []
        self.entry_map: Dict[Segment2D, int] = {}

        # reconstruction state
        self.clusters3d: List[LineCluster3D] = []
        self.lines3d: List[FinalLine3D] = []

        # parameters (set by match_images / reconstruct_3d_lines)
        self.num_neighbors = 10
        self.sigma_p = 2.5
        self.sigma_a = 10.0
        self.fixed_3d_regularizer = False
        self.min_baseline = 0.25
        self.epipolar_overlap = 0.25
        self.knn = 10
        self.visibility_t = 3
        self.collinearity_t = -1.0

        self._view_lock = threading.RLock()
        self._match_lock = threading.Lock()
        self._best_match_lock = threading.Lock()

    # ------------------------------------------------------------------
    # adding images
    # ------------------------------------------------------------------

    def add_image(self,
                  view_id: int,
                  K: np.ndarray,
                  R: np.ndarray,
                  t: np.ndarray,
                  wps_or_neighbors: Iterable[int],
                  image: Optional[np.ndarray] = None,
                  line_segments: Optional[np.ndarray] = None,
                  median_depth: float = 0.0,
                  image_size: Optional[Tuple[int, int]] = None) -> bool:
        """
        Add a calibrated view.

        Args:
            view_id: Unique view id
            K: Camera intrinsic matrix (3, 3)
            R: Rotation matrix world->camera (3, 3)
            t: Translation vector (3,)
            wps_or_neighbors: Observed world point ids, or neighbor view ids
            image: Image (H, W[, 3]); used for detection and its size
            line_segments: Segments (N, 4); detected from ``image`` if None
            median_depth: Median scene depth if known
            image_size: (width, height) when no image is given

        Returns:
            True if the view was added
        """
        wps_or_neighbors = list(wps_or_neighbors)

        with self._view_lock:
            if view_id in self.views:
                logger.error("camera ID [%s] already in use!", view_id)
                return False

            if len(self.views) == 0:
                logger.info("[1] ADDING IMAGES ================================")

        if len(wps_or_neighbors) == 0:
            if self.neighbors_by_worldpoints:
                logger.error("view [%s] has no worldpoints!", view_id)
            else:
                logger.error("view [%s] has no visual neighbors!", view_id)
            return False

        if image is not None:
            height, width = image.shape[:2]
        elif image_size is not None:
            width, height = image_size
        else:
            logger.error("view [%s] needs an image or an image size!", view_id)
            return False

        if line_segments is None or len(line_segments) == 0:
            segments = None
            if image is not None and self.line_detector is not None:
                segments = self.line_detector.detect(view_id, image)
        else:
            segments = np.asarray(line_segments, dtype=np.float64).reshape(-1, 4)

        if segments is None or len(segments) == 0:
            logger.warning("no line segments found in image [%s]!", view_id)
            return False

        view = View(view_id, segments, K, R, t, width, height, median_depth,
                    self.thresholds.min_line_length_factor)

        with self._view_lock:
            # re-check, another thread may have added the same id meanwhile
            if view_id in self.views:
                logger.error("camera ID [%s] already in use!", view_id)
                return False

            logger.info("adding view [%s]: #lines = %d [%d]",
                        view_id, view.num_lines, len(self.views))

            self.views[view_id] = view
            self.view_order.append(view_id)
            self.matches[view_id] = [[] for _ in range(view.num_lines)]
            self.num_matches[view_id] = 0
            self.processed[view_id] = False
            self.visual_neighbors[view_id] = []
            self.num_lines_total += view.num_lines

            if self.neighbors_by_worldpoints:
                self.neighbor_selector.add_worldpoints(view_id, wps_or_neighbors)
            else:
                self.neighbor_selector.set_fixed_neighbors(view_id, wps_or_neighbors)

        return True

    # ------------------------------------------------------------------
    # matching
    # ------------------------------------------------------------------

    def match_images(self,
                     sigma_position: float = 2.5,
                     sigma_angle: float = 10.0,
                     num_neighbors: int = 10,
                     epipolar_overlap: float = 0.25,
                     min_baseline: float = 0.25,
                     knn: int = 10):
        """
        Match segments across visual neighbors and score the matches.

        Args:
            sigma_position: Positional regularizer; > 0 in pixels, < 0 fixed in world units
            sigma_angle: Angular regularizer in degrees
            num_neighbors: Number of visual neighbors per view (>= 2)
            epipolar_overlap: Minimum epipolar overlap
            min_baseline: Minimum baseline between matched views
            knn: Matches kept per segment and neighbor (0 = all)
        """
        with self._view_lock:
            logger.info("[2] LINE MATCHING ================================")

            if len(self.views) == 0:
                logger.warning("no images to match! forgot to add them?")
                return

            # check params
            self.num_neighbors = max(int(num_neighbors), 2)
            self.sigma_a = min(abs(sigma_angle), 90.0)
            self.min_baseline = max(min_baseline, 0.0)
            self.epipolar_overlap = min(abs(epipolar_overlap), 0.99)
            self.knn = int(knn)

            if sigma_position < 0.0:
                # fixed sigma_p in world-coords
                self.fixed_3d_regularizer = True
                self.sigma_p = abs(sigma_position)
            else:
                # regularizer in pixels (scale unknown)
                self.fixed_3d_regularizer = False
                self.sigma_p = max(0.1, sigma_position)

            # reset
            self.matched = {view_id: set() for view_id in self.view_order}
            self.estimated_position3d = []
            self.entry_map = {}
            self.clusters3d = []
            self.lines3d = []
            self.fundamentals.clear()

            unit = "m" if self.fixed_3d_regularizer else "px"
            logger.info("computing spatial regularizers... [%s %s]", self.sigma_p, unit)

            for view_id in self.view_order:
                view = self.views[view_id]
                if self.fixed_3d_regularizer:
                    view.update_k(self.sigma_p)
                else:
                    view.compute_spatial_regularizer(self.sigma_p)

                self.matches[view_id] = [[] for _ in range(view.num_lines)]
                self.num_matches[view_id] = 0
                self.processed[view_id] = False

            logger.info("computing visual neighbors...     [%d imgs.]", self.num_neighbors)
            for view_id in self.view_order:
                self.visual_neighbors[view_id] = self.neighbor_selector.select(
                    view_id, self.views, self.num_neighbors, self.min_baseline
                )

            logger.info("computing matches...")
            self.compute_matches()

    def compute_matches(self):
        """Match, score and filter every view against its neighbors, in id order."""
        matcher = PairwiseMatcher(self.epipolar_overlap, self.knn, self.num_threads)
        scorer = self._make_scorer()

        for src in tqdm(sorted(self.visual_neighbors), desc="Matching views", leave=False):
            v_src = self.views[src]

            for tgt in self.visual_neighbors[src]:
                if tgt in self.matched[src]:
                    continue

                F = self.fundamentals.get(v_src, self.views[tgt])
                num_new = matcher.match(v_src, self.views[tgt], F,
                                        self.matches[src], self._match_lock)

                with self._match_lock:
                    self.num_matches[src] += num_new

                # set matched
                self.matched[src].add(tgt)
                self.matched[tgt].add(src)

            # scoring
            valid_f = scorer.score_view(src, self.matches[src])
            logger.info("[%s] scoring: clusterable_segments=%d%%", src, int(valid_f * 100))

            store_inverse_matches(src, self.matches, self.processed,
                                  self.num_matches, self._match_lock)

            self.filter_matches(src, scorer)
            self.processed[src] = True

            logger.info("[%s] #matches: %d, median_depth: %.4f",
                        src, self.num_matches[src], v_src.median_depth)

    def filter_matches(self, src: int, scorer: ConsistencyScorer):
        """Keep well-scored matches and store the best one as 3D estimate."""
        num_valid, promoted, median_depth = scorer.filter_view(src, self.matches[src])
        self.num_matches[src] = num_valid

        with self._best_match_lock:
            for seg_id, position in promoted:
                self.entry_map[Segment2D(src, seg_id)] = len(self.estimated_position3d)
                self.estimated_position3d.append(position)

        sigma = self.sigma_p if self.fixed_3d_regularizer else -1.0
        self.views[src].update_median_depth(median_depth, sigma)

    def _make_scorer(self) -> ConsistencyScorer:
        return ConsistencyScorer(self.views, self.sigma_a, self.thresholds, self.num_threads)

    # ------------------------------------------------------------------
    # reconstruction
    # ------------------------------------------------------------------

    def reconstruct_3d_lines(self,
                             visibility_t: int = 3,
                             perform_diffusion: bool = False,
                             collinearity_t: float = -1.0,
                             use_optimizer: bool = False,
                             max_iter_optimizer: int = 100):
        """
        Cluster the estimated 3D positions into 3D lines.

        Args:
            visibility_t: Minimum number of distinct views per cluster (>= 3)
            perform_diffusion: Smooth the affinities before clustering
            collinearity_t: Pixel threshold for collinear segments (<= 0 disables)
            use_optimizer: Refine cluster lines with least squares
            max_iter_optimizer: Iteration cap of the optimizer
        """
        with self._view_lock:
            logger.info("[3] RECONSTRUCTION ===============================")

            if len(self.estimated_position3d) == 0:
                logger.warning("no clusterable segments! forgot to match lines?")
                return

            self.visibility_t = max(int(visibility_t), 3)
            self.clusters3d = []
            self.lines3d = []

            diffusion = perform_diffusion
            if perform_diffusion and not self.diffusion_backend.is_available():
                logger.warning("diffusion backend '%s' not available! using graph clustering instead...",
                               self.diffusion_backend.name)
                diffusion = False

            logger.info("reconstructing 3D lines... [diffusion=%s, optimizer=%s]",
                        diffusion, use_optimizer)

            # find collinear segments (if not already done)
            prev_collinearity_t = self.collinearity_t
            self.collinearity_t = collinearity_t
            if collinearity_t > EPS and abs(prev_collinearity_t - collinearity_t) > EPS:
                logger.info("find collinear segments... [%s px]", collinearity_t)
                for view_id in self.view_order:
                    self.views[view_id].find_collinear_segments(collinearity_t)

            logger.info("computing affinity matrix...")
            builder = AffinityGraphBuilder(
                self.views, self._make_scorer(), self.thresholds.min_affinity,
                use_collinearity=collinearity_t > EPS, num_threads=self.num_threads
            )
            graph = builder.build(self.estimated_position3d, self.entry_map, self.matches)

            perc = int(100.0 * graph.num_nodes / max(self.num_lines_total, 1))
            logger.info("A: #entries=%d, #rows=%d [~%d%%]", len(graph.edges), graph.num_nodes, perc)

            edges = graph.edges
            if diffusion:
                logger.info("matrix diffusion...")
                edges = self.diffusion_backend.diffuse(edges, graph.num_nodes)

            logger.info("clustering segments...")
            self.clusters3d = self.cluster_segments(edges, graph.num_nodes, graph.local2global)

            if use_optimizer and self.clusters3d:
                logger.info("optimizing 3D lines...")
                LineOptimizer(self.views, max_iter_optimizer).optimize(self.clusters3d)

            logger.info("computing final 3D lines...")
            lines = compute_final_lines(self.clusters3d, self.views)

            logger.info("filtering tiny segments...")
            self.lines3d, removed = filter_tiny_segments(lines, self.views)
            logger.info("removed lines: %d", removed)
            logger.info("3D lines: total=%d", len(self.lines3d))

    def cluster_segments(self, edges, num_nodes: int,
                         local2global: Dict[int, Segment2D]) -> List[LineCluster3D]:
        """Cluster the graph and fit a 3D line to every sufficiently visible cluster."""
        if len(edges) == 0:
            logger.warning("no clusters found...")
            return []

        u = perform_clustering(edges, num_nodes, self.thresholds.clustering_scale)
        cluster2segments = group_clusters(u, local2global)

        clusters3d = []
        for segments in cluster2segments.values():
            cameras = {seg.view_id for seg in segments}
            if len(cameras) < self.visibility_t:
                continue

            lc = fit_line_cluster(segments, self.views,
                                  self.estimated_position3d, self.entry_map)
            if lc is not None and len(lc) > 0:
                clusters3d.append(lc)

        perc = int(100.0 * len(clusters3d) / max(len(cluster2segments), 1))
        logger.info("clusters: total=%d, valid=%d [~%d%%]",
                    len(cluster2segments), len(clusters3d), perc)
        return clusters3d

    def get_3d_lines(self) -> List[FinalLine3D]:
        with self._view_lock:
            return list(self.lines3d)

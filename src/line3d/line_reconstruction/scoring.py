"""
3D consistency scoring of candidate matches.

Each candidate match of a 2D segment implies a 3D hypothesis. A hypothesis is
plausible if hypotheses obtained from *other* target views agree with it in
position and orientation; the score of a match is the sum, over all other
target views, of the best agreement found in that view.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Mapping, Optional, Tuple

from .geometry import (
    EPS, EstimatedPosition, Match, Segment3D, Thresholds,
    angle_between_segments, gaussian
)
from .view import View


logger = logging.getLogger(__name__)


def unproject_match(views: Mapping[int, View], m: Match, src: bool = True) -> Segment3D:
    """3D hypothesis of a match, seen from its source (or target) view."""
    if src:
        return views[m.src_view].unproject_segment(m.src_seg, m.depth_p1, m.depth_p2)
    return views[m.tgt_view].unproject_segment(m.tgt_seg, m.depth_q1, m.depth_q2)


class ConsistencyScorer:
    """Scores, filters and promotes matches to estimated 3D positions."""

    def __init__(self,
                 views: Mapping[int, View],
                 sigma_angle: float = 10.0,
                 thresholds: Optional[Thresholds] = None,
                 num_threads: int = 4):
        """
        Initialize scorer.

        Args:
            views: All views of the session
            sigma_angle: Angular regularizer in degrees
            thresholds: Similarity and score thresholds
            num_threads: Worker threads for per-segment scoring
        """
        self.views = views
        self.sigma_angle = sigma_angle
        self.thresholds = thresholds or Thresholds()
        self.num_threads = max(int(num_threads), 1)

    def similarity(self,
                   s1: Segment3D, m1: Match,
                   s2: Segment3D, m2: Match,
                   truncate: bool = True) -> float:
        """
        Similarity of two 3D hypotheses in [0, 1].

        Combines the angular agreement with the positional agreement of all
        four endpoints, each measured against the other hypothesis' line and
        regularized by the depth of the endpoint in its own source view.
        Symmetric in its two arguments.
        """
        if s1.length < EPS or s2.length < EPS:
            return 0.0

        v1 = self.views[m1.src_view]
        v2 = self.views[m2.src_view]

        # angular similarity
        angle = angle_between_segments(s1, s2, True)
        sim_a = gaussian(angle, self.sigma_angle)

        # positional similarity
        d11 = s2.distance_point_to_line(s1.P1)
        d12 = s2.distance_point_to_line(s1.P2)
        d21 = s1.distance_point_to_line(s2.P1)
        d22 = s1.distance_point_to_line(s2.P2)

        sim_p = min(
            gaussian(d11, v1.sigma_at(m1.depth_p1)),
            gaussian(d12, v1.sigma_at(m1.depth_p2)),
            gaussian(d21, v2.sigma_at(m2.depth_p1)),
            gaussian(d22, v2.sigma_at(m2.depth_p2))
        )

        sim = min(sim_a, sim_p)

        if truncate and sim <= self.thresholds.min_similarity_3d:
            return 0.0
        return sim

    def score_segment(self, matches: List[Match]) -> bool:
        """
        Assign ``score3d`` to all matches of one source segment.

        Returns:
            True if valid matches exist towards at least two target views
        """
        hypotheses = [unproject_match(self.views, m) for m in matches]
        valid_views = set()

        for i, m in enumerate(matches):
            score_per_view: Dict[int, float] = {}

            for j, m2 in enumerate(matches):
                if m.tgt_view == m2.tgt_view:
                    continue

                sim = self.similarity(hypotheses[i], m, hypotheses[j], m2, truncate=True)

                # keep only the best agreement per view
                if sim > score_per_view.get(m2.tgt_view, -1.0):
                    score_per_view[m2.tgt_view] = sim

            m.score3d = float(sum(score_per_view.values()))
            if m.score3d > self.thresholds.min_score_3d:
                valid_views.add(m.tgt_view)

        return len(valid_views) > 1

    def score_view(self, view_id: int, seg_matches: List[List[Match]]) -> float:
        """
        Score all matches of a view.

        Returns:
            Fraction of segments with enough consistent support
        """
        view = self.views[view_id]
        if view.num_lines == 0:
            return 0.0

        if self.num_threads == 1:
            num_valid = sum(self.score_segment(ms) for ms in seg_matches)
        else:
            with ThreadPoolExecutor(max_workers=self.num_threads) as executor:
                num_valid = sum(executor.map(self.score_segment, seg_matches))

        return num_valid / float(view.num_lines)

    def filter_view(self,
                    view_id: int,
                    seg_matches: List[List[Match]]) -> Tuple[int, List[Tuple[int, EstimatedPosition]], float]:
        """
        Drop matches below the minimum score and pick the best per segment.

        ``seg_matches`` is filtered in place.

        Returns:
            Tuple of (remaining matches, [(seg_id, estimated position)],
            median depth of the promoted hypotheses)
        """
        promoted: List[Tuple[int, EstimatedPosition]] = []
        depths: List[float] = []
        num_valid = 0

        for seg_id, matches in enumerate(seg_matches):
            kept = [m for m in matches if m.score3d > self.thresholds.min_score_3d]
            seg_matches[seg_id] = kept
            num_valid += len(kept)

            if len(kept) == 0:
                continue

            best = max(kept, key=lambda m: m.score3d)
            if best.score3d > self.thresholds.min_best_score_3d:
                seg3d = unproject_match(self.views, best)
                promoted.append((seg_id, EstimatedPosition(seg3d, best)))
                depths.extend([best.depth_p1, best.depth_p2])

        median_depth = EPS
        if depths:
            depths.sort()
            median_depth = depths[len(depths) // 2]

        return num_valid, promoted, median_depth


def store_inverse_matches(view_id: int,
                          matches: Dict[int, List[List[Match]]],
                          processed: Mapping[int, bool],
                          num_matches: Dict[int, int],
                          lock: threading.Lock):
    """
    Add the reverse of every scored match of ``view_id`` to its target
    segment's candidate list, unless the target view was already processed.
    """
    for seg_matches in matches[view_id]:
        for m in seg_matches:
            if m.score3d > 0.0 and not processed.get(m.tgt_view, False):
                with lock:
                    matches[m.tgt_view][m.tgt_seg].append(m.inverse())
                    num_matches[m.tgt_view] += 1

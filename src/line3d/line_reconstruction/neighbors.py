"""
Visual neighbor selection.

For each view a small set of overlapping views is chosen to match against,
either from an explicit neighbor list or from the 3D landmarks (e.g. SfM
world points) that the views observe in common.
"""

import math
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping

from .view import View


# candidates looking in (nearly) opposite directions are discarded
MAX_AXIS_ANGLE = math.pi / 2


@dataclass
class VisualNeighbor:
    view_id: int
    score: float
    axis_angle: float


class NeighborSelector:
    """Keeps landmark visibility per view and picks matching partners."""

    def __init__(self):
        self.worldpoints2views: Dict[int, List[int]] = defaultdict(list)
        self.views2worldpoints: Dict[int, List[int]] = {}
        self.fixed_neighbors: Dict[int, List[int]] = {}
        self._lock = threading.Lock()

    def add_worldpoints(self, view_id: int, worldpoints: Iterable[int]):
        """Register the landmark ids observed by a view."""
        wps = list(worldpoints)
        with self._lock:
            for wp_id in wps:
                self.worldpoints2views[wp_id].append(view_id)
            self.views2worldpoints[view_id] = wps

    def set_fixed_neighbors(self, view_id: int, neighbors: Iterable[int]):
        with self._lock:
            self.fixed_neighbors[view_id] = list(neighbors)

    def common_worldpoints(self, view_id: int) -> Dict[int, int]:
        """Number of shared landmarks with every other view, in first-seen order."""
        common: Dict[int, int] = {}
        for wp_id in self.views2worldpoints.get(view_id, []):
            for other in self.worldpoints2views.get(wp_id, []):
                if other != view_id:
                    common[other] = common.get(other, 0) + 1
        return common

    def select(self,
               view_id: int,
               views: Mapping[int, View],
               num_neighbors: int,
               min_baseline: float) -> List[int]:
        """
        Select up to ``num_neighbors`` views to match ``view_id`` against.

        Args:
            view_id: View to find neighbors for
            views: All views of the session
            num_neighbors: Maximum number of neighbors
            min_baseline: Minimum camera center distance to the view and to
                every already accepted neighbor

        Returns:
            Ordered list of neighbor view ids (may be empty)
        """
        if view_id in self.fixed_neighbors:
            return [n for n in self.fixed_neighbors[view_id]
                    if n in views and n != view_id]

        view = views[view_id]
        common = self.common_worldpoints(view_id)
        if len(common) == 0:
            return []

        num_own = len(self.views2worldpoints.get(view_id, []))
        candidates = []
        for other_id, num_common in common.items():
            if other_id not in views:
                continue

            num_other = len(self.views2worldpoints.get(other_id, []))
            vn = VisualNeighbor(
                view_id=other_id,
                score=2.0 * num_common / float(num_own + num_other),
                axis_angle=view.optical_axes_angle(views[other_id])
            )

            if vn.axis_angle < MAX_AXIS_ANGLE:
                candidates.append(vn)

        # stable: equal scores keep their first-seen order
        candidates.sort(key=lambda vn: vn.score, reverse=True)

        accepted: List[int] = []
        for vn in candidates:
            if len(accepted) >= num_neighbors:
                break

            other = views[vn.view_id]
            if view.baseline(other) <= min_baseline:
                continue

            # distance of the candidate to every accepted neighbor
            if all(other.baseline(views[n]) > min_baseline for n in accepted):
                accepted.append(vn.view_id)

        return accepted

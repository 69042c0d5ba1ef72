"""
Sparse affinity graph over 2D segments with a 3D hypothesis.

Nodes are 2D segments (mapped to dense local ids on first use), edges carry
the 3D similarity of the two hypotheses. Edges are always stored in both
directions.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Mapping, Set, Tuple

from .geometry import EstimatedPosition, Match, Segment2D, Segment3D
from .scoring import ConsistencyScorer
from .view import View


logger = logging.getLogger(__name__)


@dataclass
class AffinityEdge:
    i: int
    j: int
    w: float


class AffinityGraph:
    """Thread-safe container for local ids, used pairs and edges."""

    def __init__(self):
        self.edges: List[AffinityEdge] = []
        self.global2local: Dict[Segment2D, int] = {}
        self.local2global: Dict[int, Segment2D] = {}
        self._used: Set[Tuple[Segment2D, Segment2D]] = set()

        self._id_lock = threading.Lock()
        self._used_lock = threading.Lock()
        self._edge_lock = threading.Lock()

    @property
    def num_nodes(self) -> int:
        return len(self.global2local)

    def local_id(self, seg: Segment2D) -> int:
        """Dense id of ``seg``, assigned on first use."""
        with self._id_lock:
            lid = self.global2local.get(seg)
            if lid is None:
                lid = len(self.global2local)
                self.global2local[seg] = lid
                self.local2global[lid] = seg
            return lid

    def unused(self, seg1: Segment2D, seg2: Segment2D) -> bool:
        """Register the (unordered) pair; False if it was already registered."""
        with self._used_lock:
            if (seg1, seg2) in self._used:
                return False
            self._used.add((seg1, seg2))
            self._used.add((seg2, seg1))
            return True

    def add_edge(self, id1: int, id2: int, w: float):
        with self._edge_lock:
            self.edges.append(AffinityEdge(id1, id2, w))
            self.edges.append(AffinityEdge(id2, id1, w))

    def clear_used(self):
        with self._used_lock:
            self._used.clear()


class AffinityGraphBuilder:
    """Links each estimated 3D position to the hypotheses of its matches."""

    def __init__(self,
                 views: Mapping[int, View],
                 scorer: ConsistencyScorer,
                 min_affinity: float = 0.25,
                 use_collinearity: bool = False,
                 num_threads: int = 4):
        self.views = views
        self.scorer = scorer
        self.min_affinity = min_affinity
        self.use_collinearity = use_collinearity
        self.num_threads = max(int(num_threads), 1)

    def similarity(self,
                   seg3d: Segment3D, m: Match,
                   seg2: Segment2D,
                   entry_map: Mapping[Segment2D, int],
                   estimated: List[EstimatedPosition]) -> float:
        """Untruncated similarity to the estimated position of ``seg2`` (0 if none)."""
        entry = entry_map.get(seg2)
        if entry is None:
            return 0.0

        other = estimated[entry]
        return self.scorer.similarity(seg3d, m, other.seg3d, other.match, truncate=False)

    def _link(self, graph: AffinityGraph, seg3d: Segment3D, m: Match,
              seg1: Segment2D, seg2: Segment2D,
              entry_map: Mapping[Segment2D, int],
              estimated: List[EstimatedPosition]) -> bool:
        sim = self.similarity(seg3d, m, seg2, entry_map, estimated)

        if sim > self.min_affinity and graph.unused(seg1, seg2):
            graph.add_edge(graph.local_id(seg1), graph.local_id(seg2), sim)
            return True
        return False

    def _process(self, graph: AffinityGraph,
                 position: EstimatedPosition,
                 matches: Mapping[int, List[List[Match]]],
                 entry_map: Mapping[Segment2D, int],
                 estimated: List[EstimatedPosition]):
        seg3d = position.seg3d
        m = position.match
        seg1 = m.source
        found_aff = False

        for m2 in matches[m.src_view][m.src_seg]:
            seg2 = m2.target

            if not self._link(graph, seg3d, m, seg1, seg2, entry_map, estimated):
                continue
            found_aff = True

            # links to segments collinear with the target
            if self.use_collinearity:
                tgt_view = self.views[seg2.view_id]
                for coll_id in tgt_view.collinear_segments(seg2.seg_id):
                    self._link(graph, seg3d, m, seg1, Segment2D(seg2.view_id, coll_id),
                               entry_map, estimated)

        # links to segments collinear with the source
        if found_aff and self.use_collinearity:
            src_view = self.views[seg1.view_id]
            for coll_id in src_view.collinear_segments(seg1.seg_id):
                self._link(graph, seg3d, m, seg1, Segment2D(seg1.view_id, coll_id),
                           entry_map, estimated)

    def build(self,
              estimated: List[EstimatedPosition],
              entry_map: Mapping[Segment2D, int],
              matches: Mapping[int, List[List[Match]]]) -> AffinityGraph:
        """
        Build the affinity graph.

        Args:
            estimated: Estimated 3D positions
            entry_map: Segment2D -> index into ``estimated``
            matches: Surviving matches per view and segment

        Returns:
            Graph with symmetric edges
        """
        graph = AffinityGraph()

        def work(position: EstimatedPosition):
            self._process(graph, position, matches, entry_map, estimated)

        if self.num_threads == 1:
            for position in estimated:
                work(position)
        else:
            with ThreadPoolExecutor(max_workers=self.num_threads) as executor:
                list(executor.map(work, estimated))

        graph.clear_used()
        return graph

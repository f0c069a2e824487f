from __future__ import annotations

import math

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from votekiosk import config
from votekiosk.errors import DescriptorLengthError
from votekiosk.face.gallery import GalleryView
from votekiosk.utils.log import get_logger
from votekiosk.utils.math import as_descriptor, euclidean_distances

logger = get_logger(__name__)


@dataclass
class MatcherConfig:
    # Euclidean distance threshold; a distance exactly equal to it is a match.
    threshold: float = config.MATCH_THRESHOLD
    # Best and second-best voters closer than this are ambiguous -> NoMatch.
    tie_epsilon: float = config.TIE_EPSILON


@dataclass(frozen=True)
class MatchResult:
    """Matched(voter_id, distance) or NoMatch.

    A NoMatch still carries the best distance seen (inf for an empty gallery)
    and whether it was refused because of a tie; both are diagnostics only.
    """

    matched: bool
    voter_id: Optional[str] = None
    distance: float = math.inf
    ambiguous: bool = False

    @classmethod
    def match(cls, voter_id: str, distance: float) -> "MatchResult":
        return cls(matched=True, voter_id=str(voter_id), distance=float(distance))

    @classmethod
    def no_match(cls, distance: float = math.inf, ambiguous: bool = False) -> "MatchResult":
        return cls(matched=False, voter_id=None, distance=float(distance), ambiguous=bool(ambiguous))


@dataclass(frozen=True)
class _FlatIndex:
    source: object
    # sorted voter ids
    names: Tuple[str, ...]
    # (N,) int32, row -> voter index; None when the gallery holds no rows
    voter_rows: Optional[np.ndarray]
    # (N, D) float32, rows of all voters
    matrix: Optional[np.ndarray]


class EuclideanMatcher:
    """Linear-scan nearest-voter matcher.

    Every enrolled descriptor is compared; a voter's distance is the minimum
    over its descriptors. The scan is exhaustive, so the flattened index only
    saves the per-call concatenation, never changes an outcome.
    """

    def __init__(self, config: MatcherConfig):
        self.config = config
        # Snapshots are immutable, so the mapping object identifies the contents exactly.
        self._index: Optional[_FlatIndex] = None

    @staticmethod
    def _build_index(view: GalleryView) -> _FlatIndex:
        names: List[str] = []
        mats: List[np.ndarray] = []
        rows: List[np.ndarray] = []

        for name in sorted(view):
            mat = np.asarray(view.descriptors(name), dtype=np.float32)
            if mat.ndim == 1:
                mat = mat.reshape(1, -1)
            if int(mat.shape[1]) != view.descriptor_length:
                raise DescriptorLengthError(view.descriptor_length, int(mat.shape[1]), f"gallery entry {name}")
            if mat.shape[0] == 0:
                continue
            names.append(name)
            mats.append(mat)
            rows.append(np.full((int(mat.shape[0]),), len(names) - 1, dtype=np.int32))

        if not mats:
            return _FlatIndex(view.source, tuple(names), None, None)
        return _FlatIndex(
            view.source,
            tuple(names),
            np.concatenate(rows, axis=0),
            np.ascontiguousarray(np.concatenate(mats, axis=0)),
        )

    def _ensure_index(self, view: GalleryView) -> _FlatIndex:
        # Read once: probe workers and debug callers may race on the swap.
        index = self._index
        if index is not None and index.source is view.source:
            return index
        index = self._build_index(view)
        self._index = index
        return index

    def _per_voter_distances(self, probe: np.ndarray, view: GalleryView) -> Tuple[Tuple[str, ...], np.ndarray]:
        q = as_descriptor(probe, view.descriptor_length, where="probe")
        index = self._ensure_index(view)
        if index.matrix is None or index.voter_rows is None:
            return index.names, np.zeros((0,), dtype=np.float64)

        dists = euclidean_distances(q, index.matrix)
        best = np.full((len(index.names),), np.inf, dtype=np.float64)
        np.minimum.at(best, index.voter_rows, dists)
        return index.names, best

    def rank(self, probe: np.ndarray, view: GalleryView, topk: int = 5) -> List[Tuple[str, float]]:
        """(voter_id, distance) pairs, nearest first."""
        names, best = self._per_voter_distances(probe, view)
        if best.size == 0:
            return []
        # Stable sort keeps voter-id order among equal distances.
        order = np.argsort(best, kind="stable")[: int(max(1, topk))]
        return [(names[int(i)], float(best[int(i)])) for i in order]

    def match(self, probe: np.ndarray, view: GalleryView) -> MatchResult:
        names, best = self._per_voter_distances(probe, view)
        if best.size == 0:
            return MatchResult.no_match()

        order = np.argsort(best, kind="stable")
        best_idx = int(order[0])
        best_dist = float(best[best_idx])
        second_dist = float(best[int(order[1])]) if len(order) >= 2 else math.inf

        if (second_dist - best_dist) <= float(self.config.tie_epsilon):
            logger.debug(
                f"Ambiguous match: {names[best_idx]}={best_dist:.6f}, {names[int(order[1])]}={second_dist:.6f}"
            )
            return MatchResult.no_match(best_dist, ambiguous=True)

        if best_dist <= float(self.config.threshold):
            return MatchResult.match(names[best_idx], best_dist)
        return MatchResult.no_match(best_dist)

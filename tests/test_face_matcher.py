from __future__ import annotations

import math
import sys

from pathlib import Path

import numpy as np
import pytest

# Ensure repo root is on sys.path so tests can import `votekiosk` without installing.
repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from votekiosk.errors import DescriptorLengthError
from votekiosk.face.gallery import Gallery, GalleryConfig, GalleryView
from votekiosk.face.matcher import EuclideanMatcher, MatcherConfig

DIM = 8


def _vec(*head: float) -> np.ndarray:
    v = np.zeros((DIM,), dtype=np.float32)
    v[: len(head)] = head
    return v


def _gallery(**entries) -> Gallery:
    g = Gallery(GalleryConfig(descriptor_length=DIM))
    for vid, descs in entries.items():
        g.enroll(vid, descs)
    return g


def test_empty_gallery_is_no_match():
    matcher = EuclideanMatcher(MatcherConfig(threshold=0.6))
    result = matcher.match(_vec(1.0), _gallery().snapshot())
    assert not result.matched
    assert result.voter_id is None
    assert math.isinf(result.distance)


def test_distance_exactly_at_threshold_matches():
    matcher = EuclideanMatcher(MatcherConfig(threshold=0.5))
    view = _gallery(A123=_vec(0.0)).snapshot()

    at = matcher.match(_vec(0.5), view)
    assert at.matched
    assert at.voter_id == "A123"
    assert at.distance == pytest.approx(0.5)

    above = matcher.match(_vec(0.5 + 1e-5), view)
    assert not above.matched
    assert above.distance > 0.5


def test_nearest_voter_wins_and_uses_closest_descriptor():
    matcher = EuclideanMatcher(MatcherConfig(threshold=0.6))
    view = _gallery(
        A=np.stack([_vec(1.0), _vec(0.0, 0.1)]),
        B=_vec(0.0, 0.3),
    ).snapshot()

    result = matcher.match(_vec(0.0, 0.12), view)
    assert result.matched
    assert result.voter_id == "A"
    assert result.distance == pytest.approx(0.02, abs=1e-6)


def test_equidistant_voters_are_ambiguous():
    matcher = EuclideanMatcher(MatcherConfig(threshold=0.6))
    view = _gallery(A=_vec(0.3), B=_vec(-0.3)).snapshot()

    result = matcher.match(_vec(0.0), view)
    assert not result.matched
    assert result.ambiguous
    assert result.distance == pytest.approx(0.3)


def test_probe_length_mismatch_is_fatal():
    matcher = EuclideanMatcher(MatcherConfig())
    view = _gallery(A=_vec(0.1)).snapshot()
    with pytest.raises(DescriptorLengthError):
        matcher.match(np.zeros((DIM + 1,), dtype=np.float32), view)


def test_gallery_entry_length_mismatch_is_fatal():
    matcher = EuclideanMatcher(MatcherConfig())
    view = GalleryView({"A": np.zeros((1, DIM), np.float32), "B": np.zeros((1, DIM - 2), np.float32)}, DIM)
    with pytest.raises(DescriptorLengthError):
        matcher.match(_vec(0.0), view)


def test_match_is_deterministic_and_rank_is_sorted():
    rng = np.random.default_rng(7)
    entries = {f"V{i:03d}": rng.normal(size=(2, DIM)).astype(np.float32) for i in range(50)}
    view = _gallery(**entries).snapshot()
    matcher = EuclideanMatcher(MatcherConfig(threshold=1.5))
    probe = entries["V017"][1] + np.float32(0.01)

    results = {matcher.match(probe, view) for _ in range(5)}
    assert len(results) == 1
    (result,) = results
    assert result.matched and result.voter_id == "V017"

    ranked = matcher.rank(probe, view, topk=5)
    assert ranked[0][0] == "V017"
    dists = [d for _, d in ranked]
    assert dists == sorted(dists)


def test_new_snapshot_sees_later_enrollment():
    matcher = EuclideanMatcher(MatcherConfig(threshold=0.6))
    g = _gallery(A=_vec(1.0))
    before = g.snapshot()
    assert not matcher.match(_vec(0.0, 1.0), before).matched

    g.enroll("B", _vec(0.0, 1.0))
    assert not matcher.match(_vec(0.0, 1.0), before).matched
    after = matcher.match(_vec(0.0, 1.0), g.snapshot())
    assert after.matched and after.voter_id == "B"

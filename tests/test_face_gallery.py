from __future__ import annotations

import pickle
import sys

from pathlib import Path

import numpy as np
import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from votekiosk.errors import DescriptorLengthError, GalleryError
from votekiosk.face.gallery import Gallery, GalleryConfig

DIM = 8


def _gallery(**kwargs) -> Gallery:
    return Gallery(GalleryConfig(descriptor_length=DIM, **kwargs))


def test_enroll_is_visible_only_to_later_snapshots():
    g = _gallery()
    before = g.snapshot()
    shape = g.enroll("A123", np.ones((DIM,), dtype=np.float32))

    assert shape == (1, DIM)
    assert "A123" in g and len(g) == 1
    assert len(before) == 0 and "A123" not in before
    assert "A123" in g.snapshot()


def test_entries_are_never_mutated():
    g = _gallery()
    g.enroll("A123", np.ones((DIM,), dtype=np.float32))
    with pytest.raises(GalleryError):
        g.enroll("A123", np.zeros((DIM,), dtype=np.float32))

    stored = g.snapshot().descriptors("A123")
    assert np.allclose(stored, 1.0)
    with pytest.raises(ValueError):
        stored[0, 0] = 5.0


def test_enroll_rejects_wrong_length_and_blank_id():
    g = _gallery()
    with pytest.raises(DescriptorLengthError):
        g.enroll("A123", np.ones((DIM - 1,), dtype=np.float32))
    with pytest.raises(GalleryError):
        g.enroll("  ", np.ones((DIM,), dtype=np.float32))
    assert len(g) == 0


def test_enroll_keeps_at_most_k_descriptors():
    g = _gallery(max_descriptors_per_voter=2)
    g.enroll("A123", np.arange(4 * DIM, dtype=np.float32).reshape(4, DIM))
    assert g.snapshot().descriptors("A123").shape == (2, DIM)
    assert g.stats["A123"]["count"] == 2


def test_save_and_load(tmp_path: Path):
    g = _gallery()
    g.enroll("A123", np.full((DIM,), 0.25, dtype=np.float32))
    g.enroll("B456", np.full((2, DIM), -0.5, dtype=np.float32))
    fp = g.save(tmp_path)
    assert fp.exists()

    restored = _gallery()
    assert restored.load(tmp_path)
    assert sorted(restored.voter_ids()) == ["A123", "B456"]
    assert np.allclose(restored.snapshot().descriptors("B456"), -0.5)


def test_load_ignores_missing_file_and_unknown_schema(tmp_path: Path):
    g = _gallery()
    assert not g.load(tmp_path)

    with open(tmp_path / g.config.filename, "wb") as f:
        pickle.dump({"schema_version": "v0", "embeddings": {}}, f)
    assert not g.load(tmp_path)
    assert len(g) == 0

from __future__ import annotations

import pickle
import threading
import time

from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Tuple

import numpy as np

from votekiosk import config
from votekiosk.errors import GalleryError
from votekiosk.utils.log import get_logger
from votekiosk.utils.math import as_descriptor_matrix

logger = get_logger(__name__)


@dataclass
class GalleryConfig:
    descriptor_length: int = config.DESCRIPTOR_LENGTH
    # Keep at most K descriptors per voter (first-captured first).
    max_descriptors_per_voter: int = config.MAX_DESCRIPTORS_PER_VOTER
    # File name for persisted gallery.
    filename: str = config.GALLERY_FILENAME
    # Schema version to support future migrations.
    schema_version: str = "v1"


class GalleryView:
    """Immutable snapshot of the gallery handed to the matcher.

    Holds a reference to a mapping that the gallery never mutates after
    publishing it, so reads need no lock and never observe a partial entry.
    """

    def __init__(self, entries: Mapping[str, np.ndarray], descriptor_length: int):
        if not isinstance(entries, MappingProxyType):
            entries = MappingProxyType(dict(entries))
        self._entries = entries
        self.descriptor_length = int(descriptor_length)

    @property
    def source(self) -> Mapping[str, np.ndarray]:
        """The published mapping; identical objects mean identical contents."""
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, voter_id: object) -> bool:
        return voter_id in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def items(self):
        return self._entries.items()

    def descriptors(self, voter_id: str) -> np.ndarray:
        return self._entries[voter_id]


class Gallery:
    """Voter id -> enrolled face descriptors, with persistence.

    Entries are created once, at the voter's first successful vote, and never
    mutated afterward. Enrollment builds a new mapping and publishes it with a
    single reference swap under the lock (copy-on-write).
    """

    def __init__(self, config: GalleryConfig):
        self.config = config
        self._lock = threading.Lock()
        self._entries: Mapping[str, np.ndarray] = MappingProxyType({})
        self.stats: Dict[str, dict] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, voter_id: object) -> bool:
        return voter_id in self._entries

    def voter_ids(self) -> List[str]:
        return list(self._entries.keys())

    def snapshot(self) -> GalleryView:
        return GalleryView(self._entries, self.config.descriptor_length)

    def enroll(self, voter_id: str, descriptors: np.ndarray) -> Tuple[int, int]:
        """Bind one or more descriptors to `voter_id`. Returns the stored (K, D) shape."""
        vid = str(voter_id).strip()
        if not vid:
            raise GalleryError("voter id must be non-empty")

        mat = as_descriptor_matrix(descriptors, self.config.descriptor_length, where=f"enroll {vid}")
        if mat.shape[0] == 0:
            raise GalleryError(f"no descriptors to enroll for {vid!r}")
        mat = np.array(mat[: int(self.config.max_descriptors_per_voter)], dtype=np.float32, copy=True)
        mat.setflags(write=False)

        with self._lock:
            if vid in self._entries:
                raise GalleryError(f"voter {vid!r} is already enrolled")
            updated = dict(self._entries)
            updated[vid] = mat
            self.stats[vid] = {"count": int(mat.shape[0]), "enrolled_at": time.time()}
            self._entries = MappingProxyType(updated)

        logger.info(f"Enrolled {vid}: {mat.shape[0]} descriptor(s), gallery size={len(updated)}")
        return int(mat.shape[0]), int(mat.shape[1])

    def save(self, gallery_dir: Path) -> Path:
        gallery_dir = Path(gallery_dir)
        gallery_dir.mkdir(parents=True, exist_ok=True)
        fp = gallery_dir / self.config.filename
        tmp = fp.with_suffix(fp.suffix + ".tmp")
        with self._lock:
            data = {
                "schema_version": self.config.schema_version,
                "descriptor_length": int(self.config.descriptor_length),
                "voter_to_descriptors": {k: np.array(v) for k, v in self._entries.items()},
                "stats": dict(self.stats),
            }
        with open(tmp, "wb") as f:
            pickle.dump(data, f)
        tmp.replace(fp)
        return fp

    def load(self, gallery_dir: Path) -> bool:
        gallery_dir = Path(gallery_dir)
        fp = gallery_dir / self.config.filename
        if not fp.exists():
            return False
        with open(fp, "rb") as f:
            data = pickle.load(f)

        if not (isinstance(data, dict) and data.get("schema_version") == self.config.schema_version):
            logger.warning(f"Unknown gallery schema in {fp}, ignoring")
            return False

        loaded: Dict[str, np.ndarray] = {}
        for vid, embs in (data.get("voter_to_descriptors") or {}).items():
            mat = as_descriptor_matrix(embs, self.config.descriptor_length, where=f"load {vid}")
            mat = np.array(mat, dtype=np.float32, copy=True)
            mat.setflags(write=False)
            loaded[str(vid)] = mat

        with self._lock:
            self._entries = MappingProxyType(loaded)
            self.stats = dict(data.get("stats", {}) or {})
        logger.info(f"Loaded gallery: {len(loaded)} voters from {fp}")
        return True

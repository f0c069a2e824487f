from __future__ import annotations

import json

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from votekiosk import config


@dataclass(frozen=True)
class Candidate:
    id: str
    name: str
    party: str = ""


class CandidateRegistry:
    """The ballot: candidates in display order."""

    def __init__(self, candidates: Iterable[Candidate]):
        self._by_id: Dict[str, Candidate] = {}
        for c in candidates:
            cid = str(c.id).strip()
            if not cid:
                raise ValueError("candidate id must be non-empty")
            if cid in self._by_id:
                raise ValueError(f"duplicate candidate id {cid!r}")
            self._by_id[cid] = c

    @classmethod
    def from_dicts(cls, items: Iterable[dict]) -> "CandidateRegistry":
        return cls(
            Candidate(id=str(d["id"]), name=str(d.get("name", d["id"])), party=str(d.get("party", ""))) for d in items
        )

    @classmethod
    def default(cls) -> "CandidateRegistry":
        return cls.from_dicts(config.DEFAULT_CANDIDATES)

    @classmethod
    def from_json(cls, path: Path) -> "CandidateRegistry":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"{path}: expected a JSON list of candidates")
        return cls.from_dicts(data)

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, candidate_id: object) -> bool:
        return candidate_id in self._by_id

    def __iter__(self) -> Iterator[Candidate]:
        return iter(self._by_id.values())

    def get(self, candidate_id: str) -> Optional[Candidate]:
        return self._by_id.get(candidate_id)

    def ids(self) -> List[str]:
        return list(self._by_id.keys())

from __future__ import annotations

import json
import os
import threading
import time

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, List, Optional

from votekiosk import config
from votekiosk.errors import (
    AlreadyVotedError,
    DoubleVoteError,
    InvalidVoterError,
    LedgerPersistenceError,
    UnknownCandidateError,
)
from votekiosk.utils.log import get_logger
from votekiosk.vote.candidates import CandidateRegistry

logger = get_logger(__name__)

SCHEMA_VERSION = "v1"


@dataclass(frozen=True)
class VoterIdentity:
    voter_id: str
    name: str

    def normalized(self) -> "VoterIdentity":
        return VoterIdentity(voter_id=str(self.voter_id).strip(), name=str(self.name).strip())


@dataclass(frozen=True)
class LedgerRecord:
    identity: VoterIdentity
    voted: bool = False
    candidate_id: Optional[str] = None
    voted_at: Optional[float] = None

    @property
    def voter_id(self) -> str:
        return self.identity.voter_id


@dataclass
class LedgerConfig:
    filename: str = config.LEDGER_FILENAME
    # None keeps the ledger in memory only.
    data_dir: Optional[Path] = None


class VoterLedger:
    """Authoritative voted/not-voted state per voter id.

    `begin_vote` is the only mutating entry point. It runs entirely under one
    lock, so concurrent attempts for the same voter resolve to exactly one
    success; the others see `voted=True` and fail with AlreadyVotedError.
    """

    def __init__(self, cfg: LedgerConfig, candidates: CandidateRegistry):
        self.cfg = cfg
        self.candidates = candidates
        self._lock = threading.Lock()
        self._records: Dict[str, LedgerRecord] = {}
        # Successful false->true transitions per voter during this process.
        self._transitions: Dict[str, int] = {}

    @property
    def path(self) -> Optional[Path]:
        if self.cfg.data_dir is None:
            return None
        return Path(self.cfg.data_dir) / self.cfg.filename

    def get(self, voter_id: str) -> Optional[LedgerRecord]:
        with self._lock:
            return self._records.get(str(voter_id).strip())

    def records(self) -> List[LedgerRecord]:
        with self._lock:
            return list(self._records.values())

    def begin_vote(self, identity: VoterIdentity, candidate_id: str) -> LedgerRecord:
        ident = identity.normalized()
        cid = str(candidate_id).strip() if candidate_id is not None else ""
        if not ident.voter_id:
            raise InvalidVoterError("voter id must be non-empty")
        if not ident.name:
            raise InvalidVoterError("voter name must be non-empty")

        with self._lock:
            previous = self._records.get(ident.voter_id)
            record = previous if previous is not None else LedgerRecord(identity=ident, voted=False)
            # A voter who has voted is refused whatever the ballot choice.
            if record.voted:
                logger.warning(f"Vote refused: {ident.voter_id} already voted")
                raise AlreadyVotedError(ident.voter_id)
            if cid not in self.candidates:
                raise UnknownCandidateError(cid)
            # Assertion only: unreachable while the voted check above runs under the same lock.
            if self._transitions.get(ident.voter_id, 0) > 0:
                logger.critical(f"Ledger integrity violation: second transition for {ident.voter_id}")
                raise DoubleVoteError(f"voter {ident.voter_id!r} transitioned twice")

            updated = replace(record, voted=True, candidate_id=cid, voted_at=time.time())
            self._records[ident.voter_id] = updated
            try:
                self._persist_locked()
            except OSError as e:
                # Roll back so memory never claims a vote the disk does not hold.
                if previous is None:
                    del self._records[ident.voter_id]
                else:
                    self._records[ident.voter_id] = previous
                logger.error(f"Failed to persist vote for {ident.voter_id}: {e}")
                raise LedgerPersistenceError(f"could not persist vote: {e}") from e
            self._transitions[ident.voter_id] = self._transitions.get(ident.voter_id, 0) + 1

        logger.info(f"Vote recorded: voter={ident.voter_id} candidate={cid}")
        return updated

    def tally(self) -> Dict[str, int]:
        counts = {cid: 0 for cid in self.candidates.ids()}
        with self._lock:
            for rec in self._records.values():
                if rec.voted and rec.candidate_id is not None:
                    counts[rec.candidate_id] = counts.get(rec.candidate_id, 0) + 1
        return counts

    def stats(self) -> Dict[str, int]:
        with self._lock:
            total = len(self._records)
            voted = sum(1 for r in self._records.values() if r.voted)
        return {"total_records": total, "total_voted": voted}

    def _persist_locked(self) -> None:
        fp = self.path
        if fp is None:
            return
        fp.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "schema_version": SCHEMA_VERSION,
            "records": {
                vid: {
                    "name": r.identity.name,
                    "candidate_id": r.candidate_id,
                    "voted": bool(r.voted),
                    "voted_at": r.voted_at,
                }
                for vid, r in self._records.items()
            },
        }
        tmp = fp.with_suffix(fp.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, fp)

    def load(self) -> bool:
        fp = self.path
        if fp is None or not fp.exists():
            return False
        with open(fp, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not (isinstance(data, dict) and data.get("schema_version") == SCHEMA_VERSION):
            logger.warning(f"Unknown ledger schema in {fp}, ignoring")
            return False

        loaded: Dict[str, LedgerRecord] = {}
        for vid, raw in (data.get("records") or {}).items():
            loaded[str(vid)] = LedgerRecord(
                identity=VoterIdentity(voter_id=str(vid), name=str(raw.get("name", ""))),
                voted=bool(raw.get("voted", False)),
                candidate_id=raw.get("candidate_id"),
                voted_at=raw.get("voted_at"),
            )
        with self._lock:
            self._records = loaded
            self._transitions = {}
        logger.info(f"Loaded ledger: {len(loaded)} records from {fp}")
        return True

from __future__ import annotations

import sys
import threading

from pathlib import Path

import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from votekiosk.errors import (
    AlreadyVotedError,
    InvalidVoterError,
    LedgerPersistenceError,
    UnknownCandidateError,
)
from votekiosk.utils.serializer import build_report
from votekiosk.vote.candidates import CandidateRegistry
from votekiosk.vote.ledger import LedgerConfig, VoterIdentity, VoterLedger


def _ledger(data_dir=None) -> VoterLedger:
    return VoterLedger(LedgerConfig(data_dir=data_dir), CandidateRegistry.default())


def test_begin_vote_transitions_once():
    ledger = _ledger()
    assert ledger.get("A123") is None

    rec = ledger.begin_vote(VoterIdentity("A123", "Ada"), "C1")
    assert rec.voted and rec.candidate_id == "C1"
    assert ledger.get("A123").voted

    with pytest.raises(AlreadyVotedError):
        ledger.begin_vote(VoterIdentity("A123", "Ada"), "C2")
    # The refused choice is not recorded.
    assert ledger.get("A123").candidate_id == "C1"
    assert ledger.tally()["C2"] == 0


def test_invalid_requests_leave_no_record():
    ledger = _ledger()
    with pytest.raises(UnknownCandidateError):
        ledger.begin_vote(VoterIdentity("A123", "Ada"), "C9")
    with pytest.raises(InvalidVoterError):
        ledger.begin_vote(VoterIdentity("   ", "Ada"), "C1")
    with pytest.raises(InvalidVoterError):
        ledger.begin_vote(VoterIdentity("A123", ""), "C1")
    assert ledger.records() == []


def test_concurrent_attempts_for_same_voter_yield_one_success():
    ledger = _ledger()
    n = 16
    barrier = threading.Barrier(n)
    successes = []
    refusals = []

    def _attempt(i: int):
        barrier.wait()
        try:
            ledger.begin_vote(VoterIdentity("A123", "Ada"), "C1" if i % 2 else "C2")
            successes.append(i)
        except AlreadyVotedError:
            refusals.append(i)

    threads = [threading.Thread(target=_attempt, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert len(successes) == 1
    assert len(refusals) == n - 1
    assert sum(ledger.tally().values()) == 1


def test_concurrent_attempts_for_different_voters_all_succeed():
    ledger = _ledger()
    barrier = threading.Barrier(8)
    errors = []

    def _attempt(i: int):
        barrier.wait()
        try:
            ledger.begin_vote(VoterIdentity(f"V{i}", f"Voter {i}"), "C3")
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=_attempt, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert errors == []
    assert ledger.stats() == {"total_records": 8, "total_voted": 8}
    assert ledger.tally()["C3"] == 8


def test_persisted_ledger_survives_restart(tmp_path: Path):
    ledger = _ledger(tmp_path)
    ledger.begin_vote(VoterIdentity("A123", "Ada"), "C1")
    ledger.begin_vote(VoterIdentity("B456", "Bo"), "C2")
    assert ledger.path.exists()

    restarted = _ledger(tmp_path)
    assert restarted.load()
    assert restarted.get("A123").voted
    with pytest.raises(AlreadyVotedError):
        restarted.begin_vote(VoterIdentity("A123", "Ada"), "C3")

    report = build_report(restarted, restarted.candidates)
    assert report["stats"]["total_voted"] == 2
    assert [row["votes"] for row in report["tally"]] == [1, 1, 0]


def test_failed_write_rolls_back(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    ledger = _ledger(tmp_path)

    def _boom():
        raise OSError("disk full")

    monkeypatch.setattr(ledger, "_persist_locked", _boom)
    with pytest.raises(LedgerPersistenceError):
        ledger.begin_vote(VoterIdentity("A123", "Ada"), "C1")
    assert ledger.get("A123") is None

    monkeypatch.undo()
    assert ledger.begin_vote(VoterIdentity("A123", "Ada"), "C1").voted


def test_repeat_vote_is_refused_before_candidate_check():
    ledger = _ledger()
    ledger.begin_vote(VoterIdentity("A123", "Ada"), "C1")

    with pytest.raises(AlreadyVotedError):
        ledger.begin_vote(VoterIdentity("A123", "Ada"), "ANY")
    assert ledger.get("A123").candidate_id == "C1"
    assert ledger.tally() == {"C1": 1, "C2": 0, "C3": 0}

    # A first-time voter with an off-ballot choice is still rejected.
    with pytest.raises(UnknownCandidateError):
        ledger.begin_vote(VoterIdentity("B456", "Bo"), "ANY")
    assert ledger.get("B456") is None

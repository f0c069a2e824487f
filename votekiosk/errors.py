"""Exception taxonomy for the kiosk core.

Two families that must never be confused:

- ``VoteError`` and ``GalleryError``: expected, user-actionable failures. The
  session controller turns them into a rejection outcome.
- ``IntegrityViolation``: an implementation defect (extractor contract broken,
  ledger double success). Never converted into a user message.

Transient problems (no face this cycle, camera hiccup) are not exceptions at
all; they travel as ``WebcamStatus.warning``.
"""
from __future__ import annotations


class VoteError(Exception):
    """Base class for ledger failures reported back to the voter."""


class AlreadyVotedError(VoteError):
    def __init__(self, voter_id: str):
        super().__init__(f"voter {voter_id!r} has already voted")
        self.voter_id = voter_id


class UnknownCandidateError(VoteError):
    def __init__(self, candidate_id: str):
        super().__init__(f"unknown candidate {candidate_id!r}")
        self.candidate_id = candidate_id


class InvalidVoterError(VoteError):
    """Voter id or name missing/blank."""


class LedgerPersistenceError(VoteError):
    """The ledger could not be written; the in-memory state was rolled back."""


class GalleryError(Exception):
    """Misuse of the face gallery, e.g. re-enrolling an existing voter."""


class IntegrityViolation(RuntimeError):
    """Internal-consistency failure. Fatal; must never pass silently."""


class DescriptorLengthError(IntegrityViolation):
    def __init__(self, expected: int, got: int, where: str = ""):
        suffix = f" ({where})" if where else ""
        super().__init__(f"descriptor length mismatch: expected {expected}, got {got}{suffix}")
        self.expected = int(expected)
        self.got = int(got)


class DoubleVoteError(IntegrityViolation):
    """A second successful vote transition was observed for one voter."""

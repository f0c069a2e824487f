"""Events and value types exchanged between the session controller and the UI."""
from __future__ import annotations

import enum

from dataclasses import dataclass
from typing import Optional

import numpy as np

from votekiosk.vote.ledger import LedgerRecord

FACE_NOT_DETECTED_WARNING = "Face not detected. Please position yourself clearly in front of the camera."
MULTIPLE_FACES_WARNING = "More than one face detected. Please make sure only the voter is in front of the camera."
WEBCAM_UNAVAILABLE_WARNING = "Failed to access webcam. Please check your camera permissions."
MODEL_LOAD_WARNING = "Failed to load face recognition models"
EXTRACTION_FAILED_WARNING = "Face analysis failed. Retrying..."


class SessionState(str, enum.Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    PROBING = "probing"
    DECIDING = "deciding"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class DisabledReason(str, enum.Enum):
    """Why submission is blocked. Declaration order is the priority order."""

    DUPLICATE_VOTER = "duplicate_voter"
    FACE_NOT_VISIBLE = "face_not_visible"
    MISSING_FIELDS = "missing_fields"
    IN_FLIGHT = "in_flight"

    @property
    def message(self) -> str:
        return _DISABLED_MESSAGES[self]


_DISABLED_MESSAGES = {
    DisabledReason.DUPLICATE_VOTER: "You appear to have already voted. Duplicate voting is not allowed.",
    DisabledReason.FACE_NOT_VISIBLE: "Your face must be clearly visible to ensure voting integrity.",
    DisabledReason.MISSING_FIELDS: "Please complete all required fields to submit your vote.",
    DisabledReason.IN_FLIGHT: "Your vote is being processed...",
}


class OutcomeReason(str, enum.Enum):
    RECORDED = "recorded"
    # Local refusals, no ledger call made.
    DUPLICATE_VOTER = "duplicate_voter"
    FACE_NOT_VISIBLE = "face_not_visible"
    MISSING_FIELDS = "missing_fields"
    IN_FLIGHT = "in_flight"
    # Ledger refusals.
    ALREADY_VOTED = "already_voted"
    FAILED = "failed"


# (title, description) pairs shown as toasts.
_OUTCOME_TOASTS = {
    OutcomeReason.RECORDED: ("Vote submitted", "Your vote has been recorded successfully."),
    OutcomeReason.DUPLICATE_VOTER: ("Duplicate voter", "You appear to have already cast a vote."),
    OutcomeReason.FACE_NOT_VISIBLE: (
        "Camera issue",
        "Please ensure your camera is working and your face is clearly visible.",
    ),
    OutcomeReason.MISSING_FIELDS: (
        "Missing information",
        "Please fill in all fields and ensure your face is visible.",
    ),
    OutcomeReason.IN_FLIGHT: ("Processing", "Your vote is being processed..."),
    OutcomeReason.ALREADY_VOTED: ("Duplicate voter", "A vote has already been recorded for this voter ID."),
    OutcomeReason.FAILED: ("Vote failed", "Your vote could not be processed. You may have already voted."),
}


@dataclass(frozen=True)
class WebcamStatus:
    active: bool
    face_detected: bool
    warning: Optional[str] = None


@dataclass(frozen=True, eq=False)
class FaceData:
    descriptor: Optional[np.ndarray]


@dataclass(frozen=True)
class VoteForm:
    name: str = ""
    voter_id: str = ""
    candidate_id: str = ""

    def is_complete(self) -> bool:
        return bool(self.name.strip() and self.voter_id.strip() and self.candidate_id.strip())


@dataclass(frozen=True)
class SubmissionOutcome:
    accepted: bool
    reason: OutcomeReason
    # The form should be cleared for the next voter.
    reset_form: bool = False
    record: Optional[LedgerRecord] = None
    detail: str = ""

    @property
    def title(self) -> str:
        return _OUTCOME_TOASTS[self.reason][0]

    @property
    def description(self) -> str:
        return _OUTCOME_TOASTS[self.reason][1]

    @property
    def ledger_called(self) -> bool:
        return self.reason in (OutcomeReason.RECORDED, OutcomeReason.ALREADY_VOTED, OutcomeReason.FAILED)


def duplicate_detected_toast(voter_id: str):
    return ("Duplicate voter detected", f"A previous vote has been detected for voter ID: {voter_id}")

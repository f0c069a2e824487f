from __future__ import annotations

import logging
import threading

from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, List, Optional, Union

import numpy as np

from votekiosk.errors import AlreadyVotedError, GalleryError, IntegrityViolation, VoteError
from votekiosk.face.extractor import MULTIPLE_FACES_REASON, DescriptorExtractor
from votekiosk.face.gallery import Gallery
from votekiosk.face.matcher import EuclideanMatcher, MatchResult
from votekiosk.session.events import (
    EXTRACTION_FAILED_WARNING,
    FACE_NOT_DETECTED_WARNING,
    MULTIPLE_FACES_WARNING,
    WEBCAM_UNAVAILABLE_WARNING,
    DisabledReason,
    FaceData,
    OutcomeReason,
    SessionState,
    SubmissionOutcome,
    VoteForm,
    WebcamStatus,
)
from votekiosk.utils.log import get_logger
from votekiosk.utils.math import as_descriptor
from votekiosk.vote.ledger import VoterIdentity, VoterLedger

logger = get_logger(__name__)

SessionEvent = Union[WebcamStatus, FaceData]
Listener = Callable[[SessionEvent], None]

_LOCAL_REFUSALS = {
    DisabledReason.DUPLICATE_VOTER: OutcomeReason.DUPLICATE_VOTER,
    DisabledReason.FACE_NOT_VISIBLE: OutcomeReason.FACE_NOT_VISIBLE,
    DisabledReason.MISSING_FIELDS: OutcomeReason.MISSING_FIELDS,
    DisabledReason.IN_FLIGHT: OutcomeReason.IN_FLIGHT,
}


@dataclass
class SessionConfig:
    # Run the extractor on a daemon worker thread; False runs it inline (tests, scripts).
    threaded: bool = True
    # Transitions kept for diagnostics.
    history_size: int = 64


@dataclass(frozen=True)
class ProbeToken:
    seq: int
    generation: int


class VotingSessionController:
    """One kiosk station: capture tick -> probe -> decide -> submit.

    Owns no persistent data. The gallery, matcher and ledger are borrowed for
    the lifetime of the controller. At most one probe is in flight; ticks that
    arrive meanwhile are dropped. A probe result is applied only if it belongs
    to the current session generation and is the most recently issued probe.
    """

    def __init__(
        self,
        extractor: DescriptorExtractor,
        gallery: Gallery,
        matcher: EuclideanMatcher,
        ledger: VoterLedger,
        cfg: Optional[SessionConfig] = None,
    ):
        self.extractor = extractor
        self.gallery = gallery
        self.matcher = matcher
        self.ledger = ledger
        self.cfg = cfg or SessionConfig()

        self._lock = threading.Lock()
        self._listeners: List[Listener] = []

        self._state = SessionState.IDLE
        self._history: Deque[SessionState] = deque([SessionState.IDLE], maxlen=int(self.cfg.history_size))
        self._generation = 0
        self._issued_seq = 0
        self._inflight: Optional[ProbeToken] = None

        self._active = False
        self._face_detected = False
        self._warning: Optional[str] = None
        self._descriptor: Optional[np.ndarray] = None
        self._last_match: Optional[MatchResult] = None
        self._duplicate_voter_id: Optional[str] = None
        self._submitting = False
        self._last_outcome: Optional[SubmissionOutcome] = None

    # ---- read-only views -------------------------------------------------

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def history(self) -> List[SessionState]:
        with self._lock:
            return list(self._history)

    @property
    def status(self) -> WebcamStatus:
        with self._lock:
            return self._status_locked()

    @property
    def duplicate_voter_id(self) -> Optional[str]:
        with self._lock:
            return self._duplicate_voter_id

    @property
    def current_descriptor(self) -> Optional[np.ndarray]:
        with self._lock:
            return self._descriptor

    @property
    def last_match(self) -> Optional[MatchResult]:
        with self._lock:
            return self._last_match

    @property
    def last_outcome(self) -> Optional[SubmissionOutcome]:
        with self._lock:
            return self._last_outcome

    @property
    def probe_in_flight(self) -> bool:
        with self._lock:
            return self._inflight is not None

    def add_listener(self, callback: Listener) -> None:
        self._listeners.append(callback)

    # ---- lifecycle -------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            if self._active:
                return
            self._active = True
            self._face_detected = False
            self._warning = None
            self._descriptor = None
            self._transition(SessionState.CAPTURING)
            events = [self._status_locked()]
        logger.info("Session started")
        self._emit(events)

    def stop(self) -> None:
        """Tear down the capture; a probe still running is discarded when it resolves."""
        with self._lock:
            self._teardown_locked()
            events = [self._status_locked()]
        logger.info("Session stopped")
        self._emit(events)

    def _teardown_locked(self) -> None:
        self._generation += 1
        self._inflight = None
        self._active = False
        self._face_detected = False
        self._warning = None
        self._descriptor = None
        self._last_match = None
        self._duplicate_voter_id = None
        self._transition(SessionState.IDLE)

    # ---- capture / probe -------------------------------------------------

    def on_capture_tick(self, frame_available: bool, warning: Optional[str] = None, frame: Any = None) -> bool:
        """Periodic callback from the capture loop. Returns True if a probe was issued."""
        if not frame_available:
            with self._lock:
                if not self._active:
                    return False
                self._face_detected = False
                self._descriptor = None
                self._warning = warning or WEBCAM_UNAVAILABLE_WARNING
                events = [self._status_locked()]
                shown = self._warning
            logger.warning(f"Capture tick without frame: {shown}")
            self._emit(events)
            return False

        if warning:
            with self._lock:
                if self._active:
                    self._warning = warning
                    events = [self._status_locked()]
                else:
                    events = []
            self._emit(events)

        token = self.begin_probe()
        if token is None:
            return False

        if self.cfg.threaded:
            t = threading.Thread(target=self._run_probe, args=(token, frame), daemon=True)
            t.start()
        else:
            self._run_probe(token, frame)
        return True

    def begin_probe(self) -> Optional[ProbeToken]:
        """Reserve the single probe slot. None if inactive or a probe is already running."""
        with self._lock:
            if not self._active:
                return None
            if self._inflight is not None:
                logger.debug(f"Probe dropped: #{self._inflight.seq} still in flight")
                return None
            self._issued_seq += 1
            token = ProbeToken(seq=self._issued_seq, generation=self._generation)
            self._inflight = token
            self._transition(SessionState.PROBING)
            return token

    def _run_probe(self, token: ProbeToken, frame: Any) -> None:
        try:
            descriptor = self.extractor.extract(frame)
        except IntegrityViolation as e:
            self._fault(e)
            raise
        except Exception as e:
            # Extractor/camera failures stop at this boundary and become a warning.
            logger.warning(f"Extractor failed on probe #{token.seq}: {e}")
            self.complete_probe(token, None, warning=EXTRACTION_FAILED_WARNING)
            return

        reason = getattr(self.extractor, "last_reason", None)
        warning = MULTIPLE_FACES_WARNING if reason == MULTIPLE_FACES_REASON else None
        self.complete_probe(token, descriptor, warning=warning)

    def complete_probe(self, token: ProbeToken, descriptor: Optional[np.ndarray], warning: Optional[str] = None) -> bool:
        """Apply a probe result. Returns False when the result was discarded."""
        try:
            with self._lock:
                if self._inflight == token:
                    self._inflight = None
                if token.generation != self._generation or not self._active:
                    logger.debug(f"Probe #{token.seq} discarded: session torn down")
                    return False
                if token.seq < self._issued_seq:
                    logger.debug(f"Probe #{token.seq} discarded: newer probe #{self._issued_seq} issued")
                    return False

                events: List[SessionEvent] = []
                if descriptor is None:
                    events.append(FaceData(None))
                    self._face_detected = False
                    self._descriptor = None
                    self._last_match = None
                    self._warning = warning or FACE_NOT_DETECTED_WARNING
                    self._transition(SessionState.CAPTURING)
                    events.append(self._status_locked())
                else:
                    desc = as_descriptor(descriptor, self.gallery.config.descriptor_length, where="extractor output")
                    events.append(FaceData(desc))
                    self._transition(SessionState.DECIDING)
                    self._decide_locked(desc)
                    self._transition(SessionState.CAPTURING)
                    events.append(self._status_locked())
        except IntegrityViolation as e:
            self._fault(e)
            raise

        self._emit(events)
        return True

    def _decide_locked(self, desc: np.ndarray) -> None:
        view = self.gallery.snapshot()
        result = self.matcher.match(desc, view)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"top-3 candidates: {self.matcher.rank(desc, view, topk=3)}")
        self._last_match = result

        duplicate = None
        if result.matched:
            record = self.ledger.get(result.voter_id)
            if record is not None and record.voted:
                duplicate = result.voter_id

        if duplicate is not None and duplicate != self._duplicate_voter_id:
            logger.warning(f"Duplicate voter detected: {duplicate} (distance={result.distance:.4f})")
        self._duplicate_voter_id = duplicate
        self._descriptor = desc
        self._face_detected = True
        self._warning = None

    def _fault(self, exc: BaseException) -> None:
        logger.critical(f"Integrity violation, stopping session: {exc}")
        with self._lock:
            self._teardown_locked()
            events = [self._status_locked()]
        self._emit(events)

    # ---- submission ------------------------------------------------------

    def disabled_reason(self, form: VoteForm) -> Optional[DisabledReason]:
        with self._lock:
            return self._disabled_reason_locked(form)

    def _disabled_reason_locked(self, form: VoteForm) -> Optional[DisabledReason]:
        # Fixed priority: duplicate > face-not-visible > missing-fields > in-flight.
        if self._duplicate_voter_id is not None:
            return DisabledReason.DUPLICATE_VOTER
        if not self._active or not self._face_detected or self._descriptor is None:
            return DisabledReason.FACE_NOT_VISIBLE
        if not form.is_complete():
            return DisabledReason.MISSING_FIELDS
        if self._submitting:
            return DisabledReason.IN_FLIGHT
        return None

    def submit(self, form: VoteForm) -> SubmissionOutcome:
        with self._lock:
            blocked = self._disabled_reason_locked(form)
            if blocked is not None:
                outcome = SubmissionOutcome(accepted=False, reason=_LOCAL_REFUSALS[blocked], detail=blocked.message)
                self._last_outcome = outcome
            else:
                self._submitting = True
                descriptor = self._descriptor
        if blocked is not None:
            logger.warning(f"Submission refused locally: {blocked.value}")
            return outcome

        identity = VoterIdentity(voter_id=form.voter_id, name=form.name)
        enrolled = False
        try:
            try:
                record = self.ledger.begin_vote(identity, form.candidate_id)
            except AlreadyVotedError as e:
                outcome = SubmissionOutcome(accepted=False, reason=OutcomeReason.ALREADY_VOTED, detail=str(e))
            except VoteError as e:
                logger.error(f"Vote failed for {form.voter_id}: {e}")
                outcome = SubmissionOutcome(accepted=False, reason=OutcomeReason.FAILED, detail=str(e))
            else:
                try:
                    self.gallery.enroll(record.voter_id, descriptor)
                    enrolled = True
                except GalleryError as e:
                    # The vote stands; only the face binding is missing.
                    logger.error(f"Enrollment failed after recorded vote for {record.voter_id}: {e}")
                outcome = SubmissionOutcome(
                    accepted=True, reason=OutcomeReason.RECORDED, reset_form=True, record=record
                )
        except IntegrityViolation as e:
            with self._lock:
                self._submitting = False
            self._fault(e)
            raise

        events: List[SessionEvent] = []
        with self._lock:
            self._submitting = False
            self._last_outcome = outcome
            if outcome.accepted:
                # The last decision predates this enrollment; wait for the next capture tick.
                self._descriptor = None
                self._face_detected = False
                self._last_match = None
                events.append(self._status_locked())
            self._transition(SessionState.ACCEPTED if outcome.accepted else SessionState.REJECTED)
            self._transition(SessionState.CAPTURING if self._active else SessionState.IDLE)
        self._emit(events)

        if outcome.accepted:
            logger.info(f"Accepted vote for {form.voter_id} (face enrolled={enrolled})")
        else:
            logger.warning(f"Rejected vote for {form.voter_id}: {outcome.reason.value}")
        return outcome

    # ---- helpers ---------------------------------------------------------

    def _transition(self, state: SessionState) -> None:
        if state != self._state:
            logger.debug(f"state {self._state.value} -> {state.value}")
        self._state = state
        self._history.append(state)

    def _status_locked(self) -> WebcamStatus:
        return WebcamStatus(active=self._active, face_detected=self._face_detected, warning=self._warning)

    def _emit(self, events: List[SessionEvent]) -> None:
        for ev in events:
            for cb in list(self._listeners):
                try:
                    cb(ev)
                except Exception:
                    logger.exception(f"Session listener failed on {type(ev).__name__}")

from __future__ import annotations

import sys

from pathlib import Path

import numpy as np

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from kiosk import KeyboardForm, capture_tick
from votekiosk.face.extractor import DescriptorExtractor
from votekiosk.face.gallery import Gallery, GalleryConfig
from votekiosk.face.matcher import EuclideanMatcher, MatcherConfig
from votekiosk.session.controller import SessionConfig, VotingSessionController
from votekiosk.utils.draw import draw_kiosk_overlay
from votekiosk.vote.candidates import CandidateRegistry
from votekiosk.vote.ledger import LedgerConfig, VoterLedger


class _FrameKeeper(DescriptorExtractor):
    def __init__(self):
        super().__init__()
        self.frames = []

    def extract(self, frame):
        self.frames.append(frame)
        return None


def _type(form: KeyboardForm, text: str) -> None:
    for ch in text:
        assert form.handle_key(ord(ch))


def test_keyboard_form_fills_fields_and_selects_candidate():
    form = KeyboardForm(CandidateRegistry.default())

    assert form.handle_key(ord("n"))
    _type(form, "Ada L")
    assert form.handle_key(8)  # backspace
    assert form.handle_key(13)  # enter

    assert form.handle_key(ord("i"))
    _type(form, "A123")
    assert form.handle_key(13)

    assert form.handle_key(ord("2"))
    assert form.form.name == "Ada "
    assert form.form.voter_id == "A123"
    assert form.form.candidate_id == "C2"
    assert form.form.is_complete()

    # Not a form key once editing has ended.
    assert not form.handle_key(ord("s"))
    form.reset()
    assert not form.form.is_complete()


def test_detection_gets_its_own_copy_of_the_preview_frame():
    keeper = _FrameKeeper()
    candidates = CandidateRegistry.default()
    controller = VotingSessionController(
        keeper,
        Gallery(GalleryConfig(descriptor_length=8)),
        EuclideanMatcher(MatcherConfig()),
        VoterLedger(LedgerConfig(), candidates),
        SessionConfig(threaded=False),
    )
    controller.start()

    frame = np.zeros((240, 320, 3), dtype=np.uint8)
    assert capture_tick(controller, True, frame, None)
    draw_kiosk_overlay(frame, face_detected=False, warning="x", disabled_reason="y", form_lines=["z"])

    assert len(keeper.frames) == 1
    assert keeper.frames[0] is not frame
    assert not keeper.frames[0].any()
    assert frame.any()

    # No frame: nothing to copy, no probe.
    assert not capture_tick(controller, False, None, "Camera frame unavailable. Retrying...")
    assert len(keeper.frames) == 1

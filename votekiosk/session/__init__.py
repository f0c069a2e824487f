"""Kiosk session: capture loop glue and the voting state machine.

This package only orchestrates; all mutation of shared state goes through
`votekiosk.vote.ledger.VoterLedger.begin_vote` and `votekiosk.face.gallery.Gallery.enroll`.
"""

from __future__ import annotations

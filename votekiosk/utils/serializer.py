from typing import Dict, Optional

import numpy as np


def serialize_record(rec) -> Dict:
    """Serialize a LedgerRecord into a JSON-safe dict."""
    return {
        "voter_id": str(rec.identity.voter_id),
        "name": str(rec.identity.name),
        "voted": bool(rec.voted),
        "candidate_id": rec.candidate_id,
        "voted_at": float(rec.voted_at) if rec.voted_at is not None else None,
    }


def serialize_match(result) -> Optional[Dict]:
    """MatchResult -> dict; an infinite distance (empty gallery) becomes None."""
    if result is None:
        return None
    dist = float(result.distance)
    return {
        "matched": bool(result.matched),
        "voter_id": result.voter_id,
        "distance": round(dist, 6) if np.isfinite(dist) else None,
        "ambiguous": bool(result.ambiguous),
    }


def serialize_outcome(outcome) -> Dict:
    return {
        "accepted": bool(outcome.accepted),
        "reason": outcome.reason.value,
        "title": outcome.title,
        "description": outcome.description,
        "reset_form": bool(outcome.reset_form),
        "detail": outcome.detail,
        "record": serialize_record(outcome.record) if outcome.record is not None else None,
    }


def build_report(ledger, candidates) -> Dict:
    """Turnout + tally, keyed by candidate, for the ledger report CLI."""
    tally = ledger.tally()
    return {
        "stats": ledger.stats(),
        "tally": [
            {"id": c.id, "name": c.name, "party": c.party, "votes": int(tally.get(c.id, 0))} for c in candidates
        ],
    }

"""Face-gated voting kiosk: duplicate-voter matching and at-most-one-vote ledger."""

"""Ballot and voter ledger."""

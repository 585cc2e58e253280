"""
Integration tests for the Parimutuel Engine.

These tests run whole market lifecycles through MarketEngine against an
in-memory ledger that enforces the market program's rules.

Run with:
    pytest tests/integration/ -v -m integration

Skip with:
    pytest -m "not integration"
"""

"""
Integration tests for the trading monitor.

These tests run a live engine with fast loop intervals against in-memory
adapter fakes. No database or network access is needed.

Run with:
    pytest tests/integration/ -v -m integration

Skip with:
    pytest -m "not integration"
"""

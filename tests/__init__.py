"""
Tests Package - Unit Tests

Test structure:
- tests/unit/ - Fast, isolated unit tests (no network, no Redis)
- tests/conftest.py - Shared fixtures: fake Scorecard API, sleep recorder, engine factory
"""

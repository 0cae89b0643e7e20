"""
DoseCall Test Suite
===================

This package contains all tests for the DoseCall medication reminder engine.

Test Structure:
- test_tools/: clock, voice scripts, transport, real-time and notification tools
- test_services/: scheduler, orchestrator, call state machine, adherence
- test_api/: webhook and management endpoint tests for FastAPI routes
- conftest.py: Shared pytest fixtures

Running Tests:
    # Run all tests
    pytest

    # Run specific test module
    pytest tests/test_services/

    # Run only marked tests
    pytest -m "unit"
    pytest -m "api"
"""

# Test configuration
TEST_DATABASE_URL = "sqlite:///:memory:"

__all__ = [
    "TEST_DATABASE_URL",
]

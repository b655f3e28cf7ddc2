"""
DoseReminder Test Suite
=======================

This package contains all tests for the DoseReminder medication reminder service.

Test Structure:
- test_tools/: Recurrence, progress and email delivery
- test_services/: Persistence and business rules
- test_actions/: Reminder dispatch and the periodic scheduler
- test_api/: API endpoint tests for FastAPI routes
- conftest.py: Shared pytest fixtures

Running Tests:
    # Run all tests
    pytest

    # Run specific test module
    pytest tests/test_api/

    # Run only marked tests
    pytest -m "api"
"""

# Test configuration
TEST_DATABASE_URL = "sqlite:///:memory:"

__all__ = [
    "TEST_DATABASE_URL",
]

"""
CareCadence Test Suite
======================

Test Structure:
- test_tools/: engine algorithms, no database
- test_services/: services against an in-memory SQLite session
- test_api/: API endpoint tests for FastAPI routes
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

"""
Test suite for the ComputeFabric orchestrator.

Run all tests:
    pytest tests/ -v

Run specific test suites:
    pytest tests/test_api.py -v          # API endpoint tests
    pytest tests/test_job_store.py -v    # Job store transitions and claims
    pytest tests/test_settlement.py -v   # Pricing and charging

Run with markers:
    pytest -m api -v          # API tests only
    pytest -m integration -v  # End-to-end scheduling scenarios
"""

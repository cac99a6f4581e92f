"""
Test Suite

Structure:
    tests/
    ├── conftest.py         # In-memory repositories and fixtures
    ├── unit/
    │   ├── test_engine/    # Selector, chain builder, advancer, rules, escalation
    │   └── test_services/  # Workflow, expense, notification services, scheduler
    └── integration/
        └── test_api/       # API endpoints through TestClient

To run tests:
    pytest backend/tests/
"""

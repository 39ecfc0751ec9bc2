"""
Scheduling Service Tests

Running Tests:
    # Unit tests (memory stores, no Postgres or Redis needed)
    pytest tests/unit -v

    # Smoke tests against a running instance
    pytest tests/e2e/smoke_test_e2e.py -v

Test Coverage:
    - Slot generation and availability
    - Conflict detection
    - Intent interpretation
    - Booking orchestration, locking and idempotency
    - Google Calendar backend and OAuth linking
    - HTTP error mapping
"""

"""
Streak Engine Test Suite

Test Structure:
    tests/
    ├── conftest.py                     # In-memory session/Redis, clock pinning, row builders
    └── unit/
        ├── test_clock.py               # Local days, deadlines, grace period
        ├── test_daily_counter.py       # Counter rollover and threshold edge
        ├── test_streak_ledger.py       # Streak increments, resets, freezes
        ├── test_mastery_scheduler.py   # Stack mastery and test grading
        ├── test_freeze_manager.py      # Overdue stacks and the freeze flag
        ├── test_guard.py               # Impact reports and fingerprints
        ├── test_pending_actions.py     # Redis-backed check/confirm records
        ├── test_progression_service.py # Transactions, retries, sweep
        ├── test_progression_router.py  # HTTP endpoints
        └── ...

Running Tests:
    # Run all tests
    pytest backend/tests/ -v

    # Run with coverage
    pytest backend/tests/ --cov=app --cov-report=html
"""

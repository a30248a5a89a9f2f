"""
Integration Tests

Integration tests run against a real PostgreSQL instance (POSTGRES_TEST_* or
POSTGRES_* environment variables). They exercise what the in-memory session
cannot: versioned UPDATEs, StaleDataError on concurrent writes and real
rollbacks.

Run with: pytest backend/tests/integration/ -v
"""

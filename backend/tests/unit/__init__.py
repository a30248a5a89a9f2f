"""
Unit Tests

Unit tests run in isolation without external dependencies.
The database session and Redis are replaced by in-memory stand-ins.

These tests are fast and can run without Docker or any services running.
"""

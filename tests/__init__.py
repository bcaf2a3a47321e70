"""
Tests Package - Unit and Integration Tests

Test structure:
- tests/unit/ - Fast, isolated component tests (Redis and HTTP replaced by fakes)
- tests/integration/ - Scheduler scenarios wiring real components over the fakes
- tests/conftest.py - Shared fixtures (FakeRedis, config factory, sqlite config db)
"""

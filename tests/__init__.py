"""
DriftFix test suite.

This package contains all tests for DriftFix, organized into:
    - unit/: Unit tests with mocked dependencies (subprocess, Redis via fakeredis)

Test Organization:
    - tests/conftest.py: Shared fixtures (configs, sample plans, fake Redis)
    - tests/unit/test_*.py: Unit tests for individual modules
"""

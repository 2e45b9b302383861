"""
Dispute Platform Unit Tests
===========================

This package contains unit tests for the commission dispute lifecycle,
its audit ledger, SLA policy, statistics, storage and API routes.

Test Modules
------------
test_dispute_lifecycle
    Filing, transitions, evidence, comments and concurrency checks.
test_dispute_ledger
    Audit entry construction and hash chain verification.
test_dispute_policy
    SLA breach rules, resolution time and dashboard statistics.
test_dispute_store
    JSON record stores and schema migration.
test_dispute_config
    Environment settings and the API entry point.
test_dispute_routes
    HTTP endpoints, role checks and error responses.

Running Tests
-------------
Execute all tests with pytest::

    pytest dispute_platform/unit_tests/ -v

Or run specific test modules::

    pytest dispute_platform/unit_tests/test_dispute_lifecycle.py -v
"""

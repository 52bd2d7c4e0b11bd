"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. reconciliation.py - Pool balances match pool records; supplies are conserved
2. atomicity.py - All-or-nothing operation semantics
3. idempotency.py - Duplicate execution handling, pure reads
4. determinism.py - Reproducible behavior
5. temporal.py - Maturity and event ordering
6. race.py - Competing takers for one entry

These tests use hypothesis for property-based testing.
"""

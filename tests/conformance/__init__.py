"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the collateral engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. solvency.py - Every debtor stays at or above the minimum health factor
2. atomicity.py - Rejected operations leave no trace
3. reentrancy.py - Mutating calls never interleave
4. valuation_rounding.py - USD conversions round in the protocol's favor

These tests use hypothesis for property-based testing.
"""

"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the CDP ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. invariant_preservation.py - Positions stay safe and clear the debt floor
2. conservation.py - Issued stablecoin equals debt plus unbacked stablecoin
3. rate_monotonicity.py - Accumulated rates never decrease
4. close_factor_bound.py - One liquidation repays at most the close factor
5. atomicity.py - Failed liquidations leave no trace

These tests use hypothesis for property-based testing.
"""

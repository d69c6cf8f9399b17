"""
Finance Engine - Source Package

The cross-entity financial consistency core of a personal-finance and
bill-splitting application: bill splits and settlement state, budget
spend propagation, and the mirrored transactions that keep the general
ledger history accurate.

DESIGN PRINCIPLES:
1. Money is Decimal cents, never float
2. Fail early on bad input, before anything is written
3. The primary write wins; secondary writes are best-effort but never silent
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Finance Engine Team"

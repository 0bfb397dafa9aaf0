"""
Microloan Engine

Flat-interest EMI schedule generation and payment reconciliation for
microloans, using Decimal money math and a hash-chained audit trail.
"""

__version__ = "1.0.0"

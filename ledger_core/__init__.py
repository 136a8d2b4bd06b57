"""
Ledger Core - Source Package

The consistency engine behind a phone-authenticated ledger app where an
admin records money sent to / received from recipients, and recipients
view a read-only history.

DESIGN PRINCIPLES:
1. Raw transactions are the source of truth
2. Summaries are derived and can always be recomputed
3. Invariant violations fail loudly, before anything is written
4. Identity resolution fails closed
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Digital Ledger Team"

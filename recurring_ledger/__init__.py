"""
Recurring Ledger - Source Package

Turns recurring-payment templates ("Netflix ₹500/month") into concrete
ledger transactions, exactly once per due occurrence, no matter how often
or how irregularly the batch job is triggered.

DESIGN PRINCIPLES:
1. Recurrence math is anchored to the template's start date, never to the last run
2. Every occurrence is claimed before it is written
3. One bad template never stops the batch
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Recurring Ledger Team"

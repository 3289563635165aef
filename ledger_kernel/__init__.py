"""
Ledger Kernel - double-entry transaction engine.

Creates, validates, posts, reverses and reconciles financial transactions with:
- Balanced entries enforced before any write
- Collision-free document numbers per (company, type, year)
- Atomic posting and account balance application
- Trial balance and account activity reporting
"""

__version__ = "0.1.0"

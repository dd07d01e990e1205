"""
Production Kernel

Validation workflow for manufacturing entries:
- Compare-and-swap status lock
- Proportional stock deduction with exact undo
- Staged outputs materialized into stock units
- Compensating rollback on every failure
"""

__version__ = "0.1.0"

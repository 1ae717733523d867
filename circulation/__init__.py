"""
Library Circulation - Source Package

The inventory and transaction consistency engine behind a library's
circulation desk: book copy counts, member borrowing capacity, the
borrow/return lifecycle, overdue fines, and the protocol that keeps the
in-memory cache in step with the durable store.

DESIGN PRINCIPLES:
1. The durable store is the source of truth
2. Store first, cache second
3. Derived numbers are recomputed, never trusted
4. Every rejected mutation carries a typed reason
5. Every mutation is auditable
"""

__version__ = "1.0.0"
__author__ = "Library Circulation Team"

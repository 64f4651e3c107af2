"""
Funding Kernel - allocation ledger for MDF contracts.

A contract/allocation bookkeeping core with:
- Channel split invariants (amount and percentage)
- Atomic multi-row mutations with rollback
- Append-only audit trail
- Ordered, idempotent schema migrations
"""

__version__ = "0.1.0"

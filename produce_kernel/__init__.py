"""
Produce Kernel - inventory cost ledger

Lot-level inventory for wholesale produce trading with:
- Sale-to-lot matching at captured lot cost
- Transactional reversal of edited and deleted trade lines
- Append-only change ledger and historical valuation by replay
- Physical stock-count reconciliation
- Day/period closing snapshots
"""

__version__ = "0.1.0"

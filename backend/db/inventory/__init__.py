"""
Inventory ledger tables.

Models:
- Item (organization-owned stock unit; `quantity` only moves through the ledger)
- Assignment (allocation of an item's stock to exactly one user or location)
- LedgerEntry (append-only record of every quantity change)
- AssignmentSync (assignment quantity update still owed by a committed entry)
"""

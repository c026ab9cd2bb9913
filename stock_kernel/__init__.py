"""
Stock Kernel - movement ledger core

An append-only inventory movement ledger with:
- Immutable Entrée / Sortie / inspection records
- Per-key compare-and-append for race-free stock updates
- Lot identity preserved end-to-end for traceability
- Structured logging and typed errors
"""

__version__ = "0.1.0"

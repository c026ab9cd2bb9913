"""Database layer for the stock ledger."""

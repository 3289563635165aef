"""Batch creation of transactions: batch records, per-item execution, background pool."""

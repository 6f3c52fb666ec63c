"""Providers — plan/apply/verify/rollback implementations per document type."""

"""Reconciliation services — one per managed concern."""

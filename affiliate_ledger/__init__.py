"""Affiliate commission ledger."""

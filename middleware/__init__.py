"""Plantwatch — HTTP middleware."""

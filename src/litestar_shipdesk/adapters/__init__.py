"""Carrier tracking API adapters."""

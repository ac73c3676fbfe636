"""Deck pipeline services."""

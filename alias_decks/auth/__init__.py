"""Caller identity and admin gates."""

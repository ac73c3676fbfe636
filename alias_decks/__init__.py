"""Alias deck gallery service."""

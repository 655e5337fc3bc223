"""Persistence: document stores and repositories."""

"""Persistence contracts and implementations."""

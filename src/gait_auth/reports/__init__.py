"""Reporting and export helpers."""

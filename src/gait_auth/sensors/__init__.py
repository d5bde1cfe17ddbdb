"""Sensor sources and sample buffering."""

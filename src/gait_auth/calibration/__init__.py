"""Calibration state machine and user guidance."""

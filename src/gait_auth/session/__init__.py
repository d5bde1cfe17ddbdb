"""Calibration and authentication session orchestration."""

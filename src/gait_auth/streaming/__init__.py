"""In-process sample streaming."""

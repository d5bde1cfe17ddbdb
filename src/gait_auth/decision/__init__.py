"""Authentication decisions and threshold policy."""

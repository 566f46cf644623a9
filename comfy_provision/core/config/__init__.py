"""Configuration loading and built-in defaults."""

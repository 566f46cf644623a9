"""Version control (git) operations."""

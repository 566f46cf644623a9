"""Process supervisor control."""

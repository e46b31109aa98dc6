"""Domain schemas."""

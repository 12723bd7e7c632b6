"""Core persistence components."""

"""Core configuration and domain primitives."""

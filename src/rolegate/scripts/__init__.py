"""Operational scripts (migrations, one-off sweeps, operator tokens)."""

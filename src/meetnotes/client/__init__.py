"""Client-side helpers for observing meeting processing."""

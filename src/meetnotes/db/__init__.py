"""Persistence: engine/session ownership, ORM models and the meeting store."""

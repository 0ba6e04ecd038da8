"""Persistence infrastructure (SQLModel engine and repositories)."""

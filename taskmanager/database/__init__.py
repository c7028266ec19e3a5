"""Persistence layer: engine/session handling, ORM models, query helpers, repository."""

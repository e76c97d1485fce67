"""Persistence collaborator: engine, migrations and declared models."""

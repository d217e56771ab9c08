"""Data models: local dataclasses, remote row schemas and the ORM."""

"""Core models, schemas and serialization utilities."""

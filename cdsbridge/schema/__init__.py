"""Business-object, metadata and discovery models."""

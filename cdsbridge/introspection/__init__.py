"""
Metadata Introspection Module

Provides the entity and attribute metadata the payload builder needs:
- MetadataProvider interface
- In-memory provider (dictionaries / JSON files)
- Web API provider with caching (1 hour TTL)
"""

from .metadata_analyzer import MetadataAnalyzer
from .metadata_provider import MetadataProvider, InMemoryMetadataProvider
from .metadata_introspector import WebApiMetadataProvider

__all__ = [
    "MetadataAnalyzer",
    "MetadataProvider",
    "InMemoryMetadataProvider",
    "WebApiMetadataProvider",
]

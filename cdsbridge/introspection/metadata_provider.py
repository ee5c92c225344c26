"""Metadata lookup interface consumed by the payload builder."""
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from cdsbridge.introspection.metadata_analyzer import MetadataAnalyzer
from cdsbridge.schema.models import AttributeMetadata, EntityFilters, EntityMetadata


class MetadataProvider(ABC):
    """Source of attribute and entity metadata."""

    @abstractmethod
    def get_attribute_metadata(
        self,
        entity_name: str,
        attribute_name: str,
    ) -> Optional[AttributeMetadata]:
        """
        Get metadata for one attribute.

        Args:
            entity_name: Entity logical name
            attribute_name: Attribute logical name (lower case)

        Returns:
            AttributeMetadata, or None if the attribute is unknown
        """
        pass

    @abstractmethod
    def get_entity_metadata(
        self,
        filters: EntityFilters,
        entity_name: str,
    ) -> Optional[EntityMetadata]:
        """
        Get entity metadata.

        Args:
            filters: Parts of the metadata required
            entity_name: Entity logical name

        Returns:
            EntityMetadata, or None if the entity is unknown
        """
        pass


class InMemoryMetadataProvider(MetadataProvider):
    """Metadata held in memory, loaded from dictionaries or a JSON file."""

    def __init__(self, entities: Optional[Iterable[EntityMetadata]] = None):
        self._entities: Dict[str, EntityMetadata] = {}
        for entity in entities or []:
            self.add_entity(entity)

    def add_entity(self, entity: EntityMetadata) -> None:
        self._entities[entity.logical_name.lower()] = entity

    def get_attribute_metadata(self, entity_name, attribute_name):
        entity = self._entities.get(entity_name.lower())
        if entity is None:
            return None
        return entity.attributes.get(attribute_name.lower())

    def get_entity_metadata(self, filters, entity_name):
        return self._entities.get(entity_name.lower())

    def entity_names(self):
        return sorted(self._entities)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InMemoryMetadataProvider":
        """
        Build from Web API shaped definitions.

        Expected shape: {"value": [EntityDefinition, ...]} or a list of definitions,
        each with "Attributes" and "ManyToOneRelationships" expanded.
        """
        definitions = data.get("value", []) if isinstance(data, dict) else data
        analyzer = MetadataAnalyzer()
        return cls(analyzer.analyze_entity(d) for d in definitions)

    @classmethod
    def from_file(cls, path) -> "InMemoryMetadataProvider":
        """Load definitions from a JSON file."""
        with open(Path(path), "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

"""
Metadata Analyzer - Parses Web API EntityDefinitions payloads into metadata models.

Supports:
- Entity set names and primary id attributes
- Expanded ManyToOneRelationships (navigation property names)
- Expanded Attributes, including lookup Targets
"""

import logging
from typing import Any, Dict, List

from cdsbridge.schema.models import AttributeMetadata, EntityMetadata, RelationshipInfo

logger = logging.getLogger(__name__)


class MetadataAnalyzer:
    """Turns raw EntityDefinitions JSON into EntityMetadata / AttributeMetadata"""

    def analyze_entity(self, definition: Dict[str, Any]) -> EntityMetadata:
        """
        Analyze a single EntityDefinition

        Args:
            definition: EntityDefinition JSON, optionally with expanded
                        Attributes and ManyToOneRelationships

        Returns:
            EntityMetadata
        """
        logical_name = definition.get("LogicalName", "")
        entity = EntityMetadata(
            logical_name=logical_name,
            entity_set_name=definition.get("EntitySetName") or "",
            primary_id_attribute=definition.get("PrimaryIdAttribute") or "",
            many_to_one_relationships=self._extract_relationships(
                definition.get("ManyToOneRelationships", [])
            ),
        )

        for attribute_data in definition.get("Attributes", []):
            attribute = self.analyze_attribute(logical_name, attribute_data)
            entity.attributes[attribute.logical_name] = attribute

        logger.debug(
            f"Analyzed {logical_name}: {len(entity.attributes)} attributes, "
            f"{len(entity.many_to_one_relationships)} relationships"
        )
        return entity

    def analyze_attribute(self, entity_name: str, data: Dict[str, Any]) -> AttributeMetadata:
        """Analyze a single AttributeMetadata payload"""
        attribute_type = data.get("AttributeType") or ""
        if not attribute_type and "LookupAttributeMetadata" in data.get("@odata.type", ""):
            attribute_type = "Lookup"

        return AttributeMetadata(
            entity_logical_name=data.get("EntityLogicalName") or entity_name,
            logical_name=(data.get("LogicalName") or "").lower(),
            attribute_type=attribute_type or "String",
            targets=tuple(data.get("Targets") or ()),
        )

    @staticmethod
    def _extract_relationships(items: List[Dict[str, Any]]) -> List[RelationshipInfo]:
        return [
            RelationshipInfo(
                referencing_attribute=item.get("ReferencingAttribute", ""),
                referenced_entity=item.get("ReferencedEntity", ""),
                navigation_property_name=item.get("ReferencingEntityNavigationPropertyName") or "",
            )
            for item in items
        ]

"""
Payload Builder - Translates attribute collections into Web API payloads

Integrates:
- FieldBuilder helpers: value-level encoding
- MetadataProvider: lookup disambiguation and entity set names
- Polymorphic lookups: navigation-property rewriting and @odata.bind
"""

import logging
from typing import Any, Iterable, Mapping, Tuple, Union

from cdsbridge.api.errors import InvalidEntityReferenceError, UnresolvedLookupMetadataError
from cdsbridge.builder.field_builder import encode_alt_keys, encode_value, format_guid
from cdsbridge.introspection.metadata_provider import MetadataProvider
from cdsbridge.schema.models import (
    EMPTY_GUID,
    AttributeMetadata,
    EntityFilters,
    EntityReference,
    OrganizationRequest,
    WebApiPayload,
)

logger = logging.getLogger(__name__)

ODATA_BIND_SUFFIX = "@odata.bind"

WEB_API_REQUESTS = ("create", "update", "delete")

Attributes = Union[Mapping[str, Any], Iterable[Tuple[str, Any]]]


def is_request_valid_for_web_api(request: OrganizationRequest) -> bool:
    """
    Check whether a request can be sent as a plain Web API entity operation.

    Upsert is excluded: the service response for keyed upserts cannot be mapped back.
    """
    return request.request_name.lower() in WEB_API_REQUESTS


class PayloadBuilder:
    """
    Builds Web API payloads from typed attribute collections

    Usage:
    ```python
    builder = PayloadBuilder(metadata_provider)
    payload = builder.translate("account", {
        "name": "Contoso",
        "ownerid": EntityReference("systemuser", user_id),
    })
    # payload.to_dict() ->
    # {"name": "Contoso", "ownerid_systemuser@odata.bind": "/systemusers(...)"}
    ```
    """

    def __init__(self, metadata: MetadataProvider):
        """
        Initialize PayloadBuilder

        Args:
            metadata: Provider for attribute and entity metadata
        """
        self.metadata = metadata

    def translate(self, entity_name: str, attributes: Attributes) -> WebApiPayload:
        """
        Translate an attribute collection into Web API fields

        Args:
            entity_name: Logical name of the entity being written
            attributes: Attribute names and values, in order

        Returns:
            WebApiPayload with one field per input attribute, in input order

        Raises:
            UnresolvedLookupMetadataError: If a lookup has no metadata
            InvalidEntityReferenceError: If a reference has neither id nor keys
        """
        items = attributes.items() if isinstance(attributes, Mapping) else attributes

        payload = WebApiPayload()
        for key, value in items:
            if isinstance(value, EntityReference):
                web_api_key, encoded = self._translate_reference(entity_name, key, value)
            else:
                web_api_key, encoded = key.lower(), encode_value(value)
            payload.append(web_api_key, encoded)

        logger.debug(f"Translated {len(payload)} attributes for {entity_name}")
        return payload

    def translate_entity(self, entity) -> WebApiPayload:
        """Translate the attributes of an Entity."""
        return self.translate(entity.logical_name, entity.attributes)

    def entity_set_name(self, entity_name: str) -> str:
        """
        Web API collection name for an entity

        Raises:
            UnresolvedLookupMetadataError: If the entity has no metadata
        """
        entity_data = self.metadata.get_entity_metadata(EntityFilters.ENTITY, entity_name)
        if entity_data is None or not entity_data.entity_set_name:
            raise UnresolvedLookupMetadataError(entity_name, entity_name)
        return entity_data.entity_set_name

    def _translate_reference(
        self,
        entity_name: str,
        key: str,
        reference: EntityReference,
    ) -> Tuple[str, str]:
        """Build the @odata.bind key and the /{set}({id}) value for a lookup."""
        attribute = self.metadata.get_attribute_metadata(entity_name, key.lower())
        if attribute is None:
            raise UnresolvedLookupMetadataError(key.lower(), entity_name)

        if attribute.is_polymorphic:
            key = self._navigation_property(entity_name, attribute, reference) or key

        identity = self.encode_identity(reference)

        target = self.metadata.get_entity_metadata(EntityFilters.ENTITY, reference.logical_name)
        if target is None or not target.entity_set_name:
            raise UnresolvedLookupMetadataError(key, reference.logical_name)

        return f"{key}{ODATA_BIND_SUFFIX}", f"/{target.entity_set_name}({identity})"

    def _navigation_property(
        self,
        entity_name: str,
        attribute: AttributeMetadata,
        reference: EntityReference,
    ) -> str:
        """Navigation property of the relationship matching the reference target."""
        entity_data = self.metadata.get_entity_metadata(EntityFilters.RELATIONSHIPS, entity_name)
        if entity_data is None:
            return ""

        for relationship in entity_data.many_to_one_relationships:
            if (
                relationship.referencing_attribute == attribute.logical_name
                and relationship.referenced_entity == reference.logical_name
            ):
                return relationship.navigation_property_name or ""

        logger.debug(
            f"No relationship for {entity_name}.{attribute.logical_name} -> {reference.logical_name}"
        )
        return ""

    @staticmethod
    def encode_identity(reference: EntityReference) -> str:
        """Record identity for a key segment: alternate keys when present, else the guid."""
        if reference.has_key_attributes:
            return encode_alt_keys(reference.key_attributes)

        if reference.id == EMPTY_GUID:
            raise InvalidEntityReferenceError(
                f"Entity reference to {reference.logical_name} has no id and no alternate keys"
            )
        return format_guid(reference.id)

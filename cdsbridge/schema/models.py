"""Models for business-object state, Web API payloads and discovery data."""
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import IntFlag
from typing import Any, Dict, Iterator, List, Optional, Tuple


EMPTY_GUID = uuid.UUID(int=0)

LOOKUP_ATTRIBUTE_TYPES = ("Lookup", "Customer", "Owner")


# ============================================================================
# Attribute values
# ============================================================================


@dataclass(frozen=True)
class OptionSetValue:
    """A single choice (picklist) value."""

    value: int


@dataclass(frozen=True)
class OptionSetValueCollection:
    """A multi-select choice value."""

    values: Tuple[OptionSetValue, ...] = ()

    @classmethod
    def of(cls, *values: int) -> "OptionSetValueCollection":
        """Build a collection from raw option values."""
        return cls(tuple(OptionSetValue(v) for v in values))

    def __iter__(self) -> Iterator[OptionSetValue]:
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)


@dataclass(frozen=True)
class Money:
    """Currency amount. Currency and precision are applied server side."""

    value: Decimal

    def __post_init__(self):
        if not isinstance(self.value, Decimal):
            object.__setattr__(self, "value", Decimal(str(self.value)))


class KeyAttributeCollection:
    """Ordered alternate-key values identifying a record."""

    def __init__(self, values: Optional[Dict[str, Any]] = None, **kwargs):
        self._values: Dict[str, Any] = dict(values or {})
        self._values.update(kwargs)

    def items(self):
        return self._values.items()

    def __iter__(self):
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __bool__(self) -> bool:
        return bool(self._values)

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __eq__(self, other):
        if isinstance(other, KeyAttributeCollection):
            return list(self._values.items()) == list(other._values.items())
        return NotImplemented

    def __hash__(self):
        return hash(tuple(self._values))

    def __repr__(self) -> str:
        return f"KeyAttributeCollection({self._values!r})"


@dataclass(frozen=True)
class EntityReference:
    """Pointer to a record by id or by alternate key."""

    logical_name: str
    id: uuid.UUID = EMPTY_GUID
    key_attributes: KeyAttributeCollection = field(default_factory=KeyAttributeCollection)

    def __post_init__(self):
        if isinstance(self.id, str):
            object.__setattr__(self, "id", uuid.UUID(self.id))
        if isinstance(self.key_attributes, dict):
            object.__setattr__(self, "key_attributes", KeyAttributeCollection(self.key_attributes))

    @property
    def has_key_attributes(self) -> bool:
        return bool(self.key_attributes)


@dataclass
class Entity:
    """A record: logical name, optional id and its attributes."""

    logical_name: str
    id: uuid.UUID = EMPTY_GUID
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_reference(self) -> EntityReference:
        """Reference to this record."""
        return EntityReference(self.logical_name, self.id)


@dataclass
class OrganizationRequest:
    """A named request with its parameters."""

    request_name: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    request_id: uuid.UUID = field(default_factory=uuid.uuid4)

    def __getitem__(self, key: str) -> Any:
        return self.parameters[key]


# ============================================================================
# Web API payload
# ============================================================================


@dataclass(frozen=True)
class SerializedField:
    """One translated field of a Web API payload."""

    web_api_key: str
    encoded_value: Any

    def __post_init__(self):
        if not self.web_api_key:
            raise ValueError("Web API field key cannot be empty")


class WebApiPayload:
    """Ordered sequence of translated fields. Duplicated keys are kept."""

    def __init__(self, fields: Optional[List[SerializedField]] = None):
        self._fields: List[SerializedField] = list(fields or [])

    def append(self, web_api_key: str, encoded_value: Any) -> None:
        self._fields.append(SerializedField(web_api_key, encoded_value))

    def keys(self) -> List[str]:
        return [f.web_api_key for f in self._fields]

    def items(self) -> List[Tuple[str, Any]]:
        return [(f.web_api_key, f.encoded_value) for f in self._fields]

    def to_dict(self) -> Dict[str, Any]:
        """JSON body form. A repeated key keeps its last value."""
        return {f.web_api_key: f.encoded_value for f in self._fields}

    def __iter__(self) -> Iterator[SerializedField]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __getitem__(self, index: int) -> SerializedField:
        return self._fields[index]

    def __eq__(self, other):
        if isinstance(other, WebApiPayload):
            return self._fields == other._fields
        return NotImplemented

    def __repr__(self) -> str:
        return f"WebApiPayload({self.items()!r})"


# ============================================================================
# Metadata
# ============================================================================


class EntityFilters(IntFlag):
    """Which parts of entity metadata to retrieve."""

    ENTITY = 1
    ATTRIBUTES = 2
    RELATIONSHIPS = 4
    ALL = ENTITY | ATTRIBUTES | RELATIONSHIPS


@dataclass(frozen=True)
class RelationshipInfo:
    """Many-to-one relationship, used to resolve polymorphic lookups."""

    referencing_attribute: str
    referenced_entity: str
    navigation_property_name: str = ""


@dataclass(frozen=True)
class AttributeMetadata:
    """Attribute metadata as needed for lookup translation."""

    entity_logical_name: str
    logical_name: str
    attribute_type: str = "String"
    targets: Tuple[str, ...] = ()

    @property
    def is_lookup(self) -> bool:
        return self.attribute_type in LOOKUP_ATTRIBUTE_TYPES

    @property
    def is_polymorphic(self) -> bool:
        """Lookup that may point at more than one entity type."""
        return self.is_lookup and len(self.targets) > 1


@dataclass
class EntityMetadata:
    """Entity metadata: Web API collection name and many-to-one relationships."""

    logical_name: str
    entity_set_name: str = ""
    primary_id_attribute: str = ""
    many_to_one_relationships: List[RelationshipInfo] = field(default_factory=list)
    attributes: Dict[str, AttributeMetadata] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "logical_name": self.logical_name,
            "entity_set_name": self.entity_set_name,
            "primary_id_attribute": self.primary_id_attribute,
            "many_to_one_relationships": [
                {
                    "referencing_attribute": r.referencing_attribute,
                    "referenced_entity": r.referenced_entity,
                    "navigation_property_name": r.navigation_property_name,
                }
                for r in self.many_to_one_relationships
            ],
            "attributes": {
                name: {"attribute_type": a.attribute_type, "targets": list(a.targets)}
                for name, a in self.attributes.items()
            },
        }


# ============================================================================
# Discovery
# ============================================================================


@dataclass(frozen=True)
class DiscoveryServerEntry:
    """A known regional server."""

    short_name: str
    display_name: str = ""
    geo_code: str = ""
    discovery_host: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "short_name": self.short_name,
            "display_name": self.display_name,
            "geo_code": self.geo_code,
            "discovery_host": self.discovery_host,
        }


@dataclass(frozen=True)
class ResolvedEndpoint:
    """Outcome of resolving a tenant service URI."""

    is_on_premise: bool
    organization_name: str = ""
    region: Optional[DiscoveryServerEntry] = None

    @property
    def is_ambiguous(self) -> bool:
        """Online, but no region could be determined."""
        return not self.is_on_premise and self.region is None


@dataclass(frozen=True)
class BatchTicket:
    """Result of routing a request towards a batch."""

    batch_id: uuid.UUID
    queued: bool


@dataclass
class OrganizationDetail:
    """An organization as listed by a discovery service."""

    unique_name: str
    friendly_name: str = ""
    endpoints: Dict[str, str] = field(default_factory=dict)

    @property
    def web_application_url(self) -> str:
        return self.endpoints.get("WebApplication", "")

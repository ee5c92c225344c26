"""Parse typed JSON attribute documents into attribute values."""
import json
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Tuple

from cdsbridge.api.errors import AttributeParseError
from cdsbridge.schema.models import (
    EMPTY_GUID,
    Entity,
    EntityReference,
    KeyAttributeCollection,
    Money,
    OptionSetValue,
    OptionSetValueCollection,
)


class AttributeParser:
    """
    Parse attribute documents written in typed JSON.

    Plain JSON scalars are kept as they are. Typed values are single-purpose
    objects tagged with an "@" marker:

        {"@ref": "account", "id": "..."}                      -> EntityReference
        {"@ref": "account", "keys": {"accountnumber": "42"}}  -> EntityReference by alternate key
        {"@option": 1}                                        -> OptionSetValue
        {"@options": [1, 2]}                                  -> OptionSetValueCollection
        {"@datetime": "2024-05-01T10:00:00Z"}                 -> datetime
        {"@money": "12.50"}                                   -> Money
        {"@guid": "..."}                                      -> UUID
    """

    MARKERS = ("@ref", "@option", "@options", "@datetime", "@money", "@guid")

    def parse(self, content: str) -> List[Tuple[str, Any]]:
        """
        Parse a JSON object of attributes.

        Args:
            content: JSON text, an object mapping attribute names to values

        Returns:
            List of (attribute, value) pairs in document order

        Raises:
            AttributeParseError: If the document or one of its values is malformed
        """
        try:
            document = json.loads(content)
        except json.JSONDecodeError as e:
            raise AttributeParseError(f"Invalid JSON: {e}") from e

        return self.parse_attributes(document)

    def parse_attributes(self, document: Dict[str, Any]) -> List[Tuple[str, Any]]:
        """Parse an already decoded attribute object."""
        if not isinstance(document, dict):
            raise AttributeParseError("Attribute document must be a JSON object")

        return [(key, self.parse_value(key, value)) for key, value in document.items()]

    def parse_entity(self, entity_name: str, content: str) -> Entity:
        """Parse a document into an Entity. An "@id" member sets the record id."""
        pairs = self.parse(content)
        entity_id = EMPTY_GUID
        attributes: Dict[str, Any] = {}
        for key, value in pairs:
            if key == "@id":
                entity_id = self._guid(key, value)
            else:
                attributes[key] = value
        return Entity(entity_name, entity_id, attributes)

    def parse_file(self, file_path) -> List[Tuple[str, Any]]:
        """Read and parse an attribute document from disk."""
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        with open(file_path, "r", encoding="utf-8") as f:
            return self.parse(f.read())

    def parse_value(self, key: str, value: Any) -> Any:
        """Convert one JSON value into its attribute value."""
        if not isinstance(value, dict):
            if isinstance(value, list):
                raise AttributeParseError(
                    f"{key}: arrays are only allowed inside an @options value"
                )
            return value

        markers = [m for m in self.MARKERS if m in value]
        if len(markers) != 1:
            raise AttributeParseError(
                f"{key}: expected exactly one of {', '.join(self.MARKERS)}"
            )

        marker = markers[0]
        raw = value[marker]

        if marker == "@ref":
            return self._reference(key, raw, value)
        if marker == "@option":
            return OptionSetValue(self._int(key, raw))
        if marker == "@options":
            if not isinstance(raw, list):
                raise AttributeParseError(f"{key}: @options must be a list")
            return OptionSetValueCollection.of(*(self._int(key, v) for v in raw))
        if marker == "@datetime":
            return self._datetime(key, raw)
        if marker == "@money":
            try:
                return Money(Decimal(str(raw)))
            except InvalidOperation as e:
                raise AttributeParseError(f"{key}: invalid money amount {raw!r}") from e
        return self._guid(key, raw)

    def _reference(self, key: str, logical_name: Any, value: Dict[str, Any]) -> EntityReference:
        if not isinstance(logical_name, str) or not logical_name:
            raise AttributeParseError(f"{key}: @ref must name an entity")

        keys = value.get("keys") or {}
        if not isinstance(keys, dict):
            raise AttributeParseError(f"{key}: keys must be an object")

        key_attributes = KeyAttributeCollection(
            {name: self.parse_value(f"{key}.{name}", v) for name, v in keys.items()}
        )
        entity_id = self._guid(key, value["id"]) if value.get("id") else EMPTY_GUID
        return EntityReference(logical_name, entity_id, key_attributes)

    @staticmethod
    def _int(key: str, raw: Any) -> int:
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise AttributeParseError(f"{key}: option values must be integers, got {raw!r}")
        return raw

    @staticmethod
    def _guid(key: str, raw: Any) -> uuid.UUID:
        try:
            return uuid.UUID(str(raw))
        except ValueError as e:
            raise AttributeParseError(f"{key}: invalid guid {raw!r}") from e

    @staticmethod
    def _datetime(key: str, raw: Any) -> datetime:
        if not isinstance(raw, str):
            raise AttributeParseError(f"{key}: @datetime must be a string")

        text = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise AttributeParseError(f"{key}: invalid datetime {raw!r}") from e

        # Offset-less values are UTC in documents
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

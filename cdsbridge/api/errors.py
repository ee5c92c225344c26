"""Errors raised by the translation, routing and execution layers."""
from typing import Optional


class CdsClientError(Exception):
    """Base class for client errors."""


class UnresolvedLookupMetadataError(CdsClientError):
    """A lookup attribute, or the entity it points at, has no metadata."""

    def __init__(self, attribute_name: str, entity_name: str):
        self.attribute_name = attribute_name
        self.entity_name = entity_name
        super().__init__(
            f"Entity Reference {attribute_name} was not found for entity {entity_name}."
        )


class InvalidEntityReferenceError(CdsClientError, ValueError):
    """Entity reference carries neither an id nor alternate keys."""


class InvalidBatchReferenceError(CdsClientError):
    """Batch id does not refer to an open batch."""

    def __init__(self, batch_id, message: Optional[str] = None):
        self.batch_id = batch_id
        super().__init__(message or f"Batch {batch_id} was not found or is no longer open.")


class BatchCapacityError(CdsClientError):
    """Batch already holds the maximum number of requests."""


class ExecutionError(CdsClientError):
    """A request failed at the transport or service level."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class MetadataFetchError(CdsClientError):
    """Entity or attribute metadata could not be retrieved."""


class AttributeParseError(CdsClientError, ValueError):
    """Typed attribute document could not be parsed."""

"""
Field Builder - Encodes individual attribute values for the Web API

Supports:
- Option sets and multi-select option sets (numeric values)
- Date/time values (UTC, millisecond precision, literal Z)
- Money, booleans and guids
- Alternate-key segments for entity references
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from cdsbridge.schema.models import (
    EntityReference,
    KeyAttributeCollection,
    Money,
    OptionSetValue,
    OptionSetValueCollection,
)

logger = logging.getLogger(__name__)

WEB_API_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def format_web_api_datetime(value: datetime) -> str:
    """
    Format a datetime as the Web API expects it: YYYY-MM-DDTHH:MM:SS.fffZ

    Naive values are taken as local time before the UTC conversion.

    Args:
        value: Datetime to format

    Returns:
        str: UTC timestamp with millisecond precision
    """
    utc = value.astimezone(timezone.utc)
    return f"{utc.strftime('%Y-%m-%dT%H:%M:%S')}.{utc.microsecond // 1000:03d}Z"


def parse_web_api_datetime(text: str) -> datetime:
    """Parse a Web API timestamp into an aware UTC datetime."""
    parsed = datetime.strptime(text, WEB_API_DATETIME_FORMAT)
    return parsed.replace(tzinfo=timezone.utc)


def format_guid(value: uuid.UUID, parenthesized: bool = False) -> str:
    """Canonical hyphenated guid, optionally wrapped in parentheses."""
    text = str(value)
    return f"({text})" if parenthesized else text


def encode_option_set_collection(values: OptionSetValueCollection) -> Optional[str]:
    """
    Join multi-select option values with commas.

    An empty selection encodes as None, which clears the column.
    """
    if len(values) == 0:
        return None
    return ",".join(str(option.value) for option in values)


def encode_alt_key_value(value: Any) -> str:
    """Encode a single alternate-key value for an OData key segment."""
    if isinstance(value, OptionSetValue):
        return str(value.value)
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, Money):
        return str(value.value)
    text = str(value).replace("'", "''")
    return f"'{text}'"


def encode_alt_keys(keys: KeyAttributeCollection) -> str:
    """
    Build the Web API alternate-key segment for a record.

    Transforms:
        {"accountnumber": "12345", "statuscode": OptionSetValue(1)}
    Into:
        accountnumber='12345',statuscode=1

    Entity reference values address the lookup column:
        _parentid_value=(00000000-0000-0000-0000-000000000001)

    Args:
        keys: Alternate-key names and values

    Returns:
        str: Comma separated key segment, no trailing separator

    Raises:
        ValueError: If the collection is empty
    """
    if not keys:
        raise ValueError("Alternate key collection is empty")

    segments = []
    for key, value in keys.items():
        if isinstance(value, EntityReference):
            segments.append(f"_{key}_value={format_guid(value.id, parenthesized=True)}")
        else:
            segments.append(f"{key}={encode_alt_key_value(value)}")

    return ",".join(segments)


def encode_value(value: Any) -> Any:
    """
    Encode a non-reference attribute value.

    Strings and numbers pass through unchanged.
    """
    if value is None:
        return None

    if isinstance(value, OptionSetValueCollection):
        return encode_option_set_collection(value)

    if isinstance(value, OptionSetValue):
        return str(value.value)

    if isinstance(value, datetime):
        return format_web_api_datetime(value)

    if isinstance(value, Money):
        return str(value.value)

    if isinstance(value, bool):
        return str(value)

    if isinstance(value, uuid.UUID):
        return format_guid(value)

    return value

"""
Payload Builder Module

Translates typed attribute collections into Web API payloads:
- Lookup rewriting (navigation properties, @odata.bind)
- Alternate-key segments
- Option set, date, money, boolean and guid encoding
"""

from .payload_builder import PayloadBuilder, is_request_valid_for_web_api
from .field_builder import (
    encode_alt_keys,
    encode_value,
    format_web_api_datetime,
    parse_web_api_datetime,
)

__all__ = [
    "PayloadBuilder",
    "is_request_valid_for_web_api",
    "encode_alt_keys",
    "encode_value",
    "format_web_api_datetime",
    "parse_web_api_datetime",
]

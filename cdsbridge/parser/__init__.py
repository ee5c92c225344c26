"""Typed JSON attribute parsing."""

from .attribute_parser import AttributeParser

__all__ = ["AttributeParser"]

"""Dynamics application operations built on the Web API client."""

from .extensions import (
    cancel_sales_order,
    close_incident,
    close_opportunity,
    close_quote,
    close_trouble_ticket,
)

__all__ = [
    "cancel_sales_order",
    "close_incident",
    "close_opportunity",
    "close_quote",
    "close_trouble_ticket",
]

"""
Dynamics close/cancel operations.

Each operation builds the close activity record, wraps it in the matching
request and either queues it on a batch or executes it right away.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from cdsbridge.api.dataverse_client import DataverseClient
from cdsbridge.api.errors import BatchCapacityError, InvalidBatchReferenceError
from cdsbridge.schema.models import (
    EMPTY_GUID,
    Entity,
    EntityReference,
    OptionSetValue,
    OrganizationRequest,
)

logger = logging.getLogger(__name__)

QUOTE_WON_STATUS = 4
OPPORTUNITY_WON_STATUS = 3
INCIDENT_RESOLVED_STATUS = 5

MIN_QUOTE_STATUS = 3
MIN_OPPORTUNITY_STATUS = 3
MIN_ORDER_STATUS = 4


def close_quote(
    client: DataverseClient,
    quote_id: uuid.UUID,
    fields: Optional[Dict[str, Any]] = None,
    quote_status_code: int = 3,
    batch_id: uuid.UUID = EMPTY_GUID,
    bypass_plugin_execution: bool = False,
) -> uuid.UUID:
    """
    Close a quote as won (status 4) or lost (any other status >= 3).

    Args:
        client: Connected client
        quote_id: Quote to close
        fields: Extra quoteclose attributes
        quote_status_code: Quote status, 3 or greater
        batch_id: Batch to queue on, EMPTY_GUID to run now
        bypass_plugin_execution: Skip custom plugins (needs the bypass privilege)

    Returns:
        Id of the quoteclose activity, or EMPTY_GUID when queued
    """
    _require_id(quote_id, "quote_id")
    _require_min_status(quote_status_code, MIN_QUOTE_STATUS, "quote_status_code")

    activity, activity_id = _close_activity(
        "quoteclose", fields, "quoteid", EntityReference("quote", quote_id)
    )
    request_name = "WinQuote" if quote_status_code == QUOTE_WON_STATUS else "CloseQuote"
    request = OrganizationRequest(
        request_name,
        {"QuoteClose": activity, "Status": OptionSetValue(quote_status_code)},
    )
    return _dispatch(client, batch_id, request, bypass_plugin_execution, activity_id)


def close_opportunity(
    client: DataverseClient,
    opportunity_id: uuid.UUID,
    fields: Optional[Dict[str, Any]] = None,
    opportunity_status_code: int = 3,
    batch_id: uuid.UUID = EMPTY_GUID,
    bypass_plugin_execution: bool = False,
) -> uuid.UUID:
    """
    Close an opportunity as won (status 3) or lost (any other status above 3).

    Returns:
        Id of the opportunityclose activity, or EMPTY_GUID when queued
    """
    _require_id(opportunity_id, "opportunity_id")
    _require_min_status(opportunity_status_code, MIN_OPPORTUNITY_STATUS, "opportunity_status_code")

    activity, activity_id = _close_activity(
        "opportunityclose", fields, "opportunityid", EntityReference("opportunity", opportunity_id)
    )
    if opportunity_status_code == OPPORTUNITY_WON_STATUS:
        request_name = "WinOpportunity"
    else:
        request_name = "LoseOpportunity"
    request = OrganizationRequest(
        request_name,
        {"OpportunityClose": activity, "Status": OptionSetValue(opportunity_status_code)},
    )
    return _dispatch(client, batch_id, request, bypass_plugin_execution, activity_id)


def close_incident(
    client: DataverseClient,
    incident_id: uuid.UUID,
    fields: Optional[Dict[str, Any]] = None,
    incident_status_code: int = INCIDENT_RESOLVED_STATUS,
    batch_id: uuid.UUID = EMPTY_GUID,
    bypass_plugin_execution: bool = False,
) -> uuid.UUID:
    """
    Resolve a case. "subject" is expected among the fields.

    Returns:
        Id of the incidentresolution activity, or EMPTY_GUID when queued
    """
    _require_id(incident_id, "incident_id")

    activity, activity_id = _close_activity(
        "incidentresolution", fields, "incidentid", EntityReference("incident", incident_id)
    )
    request = OrganizationRequest(
        "CloseIncident",
        {"IncidentResolution": activity, "Status": OptionSetValue(incident_status_code)},
    )
    return _dispatch(client, batch_id, request, bypass_plugin_execution, activity_id)


def cancel_sales_order(
    client: DataverseClient,
    sales_order_id: uuid.UUID,
    fields: Optional[Dict[str, Any]] = None,
    order_status_code: int = 4,
    batch_id: uuid.UUID = EMPTY_GUID,
    bypass_plugin_execution: bool = False,
) -> uuid.UUID:
    """
    Cancel a sales order.

    Returns:
        Id of the orderclose activity, or EMPTY_GUID when queued
    """
    _require_id(sales_order_id, "sales_order_id")
    _require_min_status(order_status_code, MIN_ORDER_STATUS, "order_status_code")

    activity, activity_id = _close_activity(
        "orderclose", fields, "salesorderid", EntityReference("salesorder", sales_order_id)
    )
    request = OrganizationRequest(
        "CancelSalesOrder",
        {"OrderClose": activity, "Status": OptionSetValue(order_status_code)},
    )
    return _dispatch(client, batch_id, request, bypass_plugin_execution, activity_id)


def close_trouble_ticket(
    client: DataverseClient,
    ticket_id: uuid.UUID,
    subject: str,
    description: str,
    batch_id: uuid.UUID = EMPTY_GUID,
    bypass_plugin_execution: bool = False,
) -> uuid.UUID:
    """
    Resolve a case with just a subject and a description.

    Returns:
        Id of the incidentresolution activity, or EMPTY_GUID when queued
    """
    _require_id(ticket_id, "ticket_id")

    activity_id = uuid.uuid4()
    resolution = Entity("incidentresolution", activity_id, {
        "activityid": activity_id,
        "incidentid": EntityReference("incident", ticket_id),
        "statecode": OptionSetValue(1),
        "statuscode": OptionSetValue(2),
        "subject": subject,
        "description": description,
        "actualend": datetime.now(timezone.utc),
    })
    request = OrganizationRequest(
        "CloseIncident",
        {"IncidentResolution": resolution, "Status": OptionSetValue(INCIDENT_RESOLVED_STATUS)},
    )
    return _dispatch(client, batch_id, request, bypass_plugin_execution, activity_id)


def _close_activity(
    logical_name: str,
    fields: Optional[Dict[str, Any]],
    parent_key: str,
    parent: EntityReference,
) -> Tuple[Entity, uuid.UUID]:
    """Close activity record with its parent reference and activity id filled in."""
    attributes = dict(fields or {})
    attributes.setdefault(parent_key, parent)

    entity = Entity(logical_name, attributes=attributes)
    if "activityid" in attributes:
        activity_id = attributes["activityid"]
        if not isinstance(activity_id, uuid.UUID):
            activity_id = uuid.UUID(str(activity_id))
    else:
        activity_id = uuid.uuid4()
        entity.id = activity_id
    return entity, activity_id


def _dispatch(
    client: DataverseClient,
    batch_id: uuid.UUID,
    request: OrganizationRequest,
    bypass_plugin_execution: bool,
    activity_id: uuid.UUID,
) -> uuid.UUID:
    """Queue on the batch, or execute now. A rejected batch falls back to executing now."""
    try:
        if client.add_request_to_batch(batch_id, request, bypass_plugin_execution):
            logger.info(f"Request to {request.request_name} queued on batch {batch_id}")
            return EMPTY_GUID
    except (InvalidBatchReferenceError, BatchCapacityError) as e:
        logger.warning(f"Could not queue {request.request_name}: {e} Executing immediately.")

    logger.info(f"Calling {request.request_name}")
    client.execute(request, bypass_plugin_execution)
    return activity_id


def _require_id(value: uuid.UUID, name: str) -> None:
    if value is None or value == EMPTY_GUID:
        raise ValueError(f"{name} must be a non-empty guid")


def _require_min_status(value: int, minimum: int, name: str) -> None:
    if value < minimum:
        raise ValueError(f"{name} must be {minimum} or greater, got {value}")

"""Shared fixtures: a small in-memory Dataverse metadata catalog."""
import pytest

from cdsbridge.introspection.metadata_provider import InMemoryMetadataProvider
from cdsbridge.schema.models import AttributeMetadata, EntityMetadata, RelationshipInfo


def _entity(logical_name, entity_set_name, primary_id, attributes=(), relationships=()):
    entity = EntityMetadata(
        logical_name=logical_name,
        entity_set_name=entity_set_name,
        primary_id_attribute=primary_id,
        many_to_one_relationships=list(relationships),
    )
    for attribute in attributes:
        entity.attributes[attribute.logical_name] = attribute
    return entity


@pytest.fixture
def metadata():
    """Accounts, contacts and the sales/service close activities"""
    return InMemoryMetadataProvider([
        _entity(
            "account", "accounts", "accountid",
            attributes=[
                AttributeMetadata("account", "name", "String"),
                AttributeMetadata("account", "primarycontactid", "Lookup", ("contact",)),
                AttributeMetadata("account", "parentaccountid", "Lookup", ("account",)),
                AttributeMetadata("account", "ownerid", "Owner", ("systemuser", "team")),
            ],
            relationships=[
                RelationshipInfo("primarycontactid", "contact", "primarycontactid"),
                RelationshipInfo("ownerid", "systemuser", "owninguser"),
                RelationshipInfo("ownerid", "team", "owningteam"),
            ],
        ),
        _entity(
            "contact", "contacts", "contactid",
            attributes=[
                AttributeMetadata("contact", "lastname", "String"),
                AttributeMetadata("contact", "parentcustomerid", "Customer", ("account", "contact")),
            ],
            relationships=[
                RelationshipInfo("parentcustomerid", "account", "parentcustomerid_account"),
                RelationshipInfo("parentcustomerid", "contact", "parentcustomerid_contact"),
            ],
        ),
        _entity("systemuser", "systemusers", "systemuserid"),
        _entity("team", "teams", "teamid"),
        _entity("quote", "quotes", "quoteid"),
        _entity("opportunity", "opportunities", "opportunityid"),
        _entity("incident", "incidents", "incidentid"),
        _entity("salesorder", "salesorders", "salesorderid"),
        _entity(
            "quoteclose", "quotecloses", "activityid",
            attributes=[AttributeMetadata("quoteclose", "quoteid", "Lookup", ("quote",))],
        ),
        _entity(
            "opportunityclose", "opportunitycloses", "activityid",
            attributes=[
                AttributeMetadata("opportunityclose", "opportunityid", "Lookup", ("opportunity",)),
            ],
        ),
        _entity(
            "incidentresolution", "incidentresolutions", "activityid",
            attributes=[
                AttributeMetadata("incidentresolution", "incidentid", "Lookup", ("incident",)),
            ],
        ),
        _entity(
            "orderclose", "ordercloses", "activityid",
            attributes=[AttributeMetadata("orderclose", "salesorderid", "Lookup", ("salesorder",))],
        ),
    ])

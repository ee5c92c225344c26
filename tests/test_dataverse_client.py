"""
Unit tests for DataverseClient

Tests:
- Entity operations: create/update/delete through the payload builder
- Actions: entity parameters tagged with @odata.type
- Headers: bearer token, request id, plugin bypass
- Batches: queued execution order, continue_on_error
- retrieve_multiple: auto-retry entities
"""

import uuid
from unittest.mock import Mock, patch

import pytest
import requests

from config import DataverseApiConfig
from cdsbridge.api.dataverse_client import DataverseClient, RequestHeaders
from cdsbridge.api.errors import ExecutionError, InvalidBatchReferenceError, UnresolvedLookupMetadataError
from cdsbridge.schema.models import (
    Entity,
    EntityReference,
    OptionSetValue,
    OrganizationRequest,
)


ACCOUNT_ID = uuid.UUID("6f1c2a3b-0d4e-4f5a-9b8c-7d6e5f4a3b2c")
QUOTE_ID = uuid.UUID("aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee")
WEB_API = "https://contoso.crm.dynamics.com/api/data/v9.2"


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def config():
    return DataverseApiConfig(
        service_uri="https://contoso.crm.dynamics.com",
        api_key="token123",
        retry_count=2,
        retry_pause=0,
    )


@pytest.fixture
def client(config, metadata):
    return DataverseClient(config, metadata)


def make_response(status_code=200, body=None, headers=None):
    response = Mock()
    response.status_code = status_code
    response.headers = headers or {}
    response.content = b"{}" if body is not None else b""
    response.json.return_value = body
    response.reason = "Error"
    response.text = ""
    return response


# ============================================================================
# TEST: Entity operations
# ============================================================================


class TestEntityOperations:
    """Tests for create/update/delete"""

    @patch("requests.Session.request")
    def test_create(self, mock_request, client):
        mock_request.return_value = make_response(
            204, headers={"OData-EntityId": f"{WEB_API}/accounts({ACCOUNT_ID})"}
        )
        target = Entity("account", attributes={
            "name": "Contoso",
            "primarycontactid": EntityReference("contact", QUOTE_ID),
        })

        result = client.execute(OrganizationRequest("Create", {"Target": target}))

        assert result == {"id": ACCOUNT_ID}
        args, kwargs = mock_request.call_args
        assert args == ("POST", f"{WEB_API}/accounts")
        assert kwargs["json"] == {
            "name": "Contoso",
            "primarycontactid@odata.bind": f"/contacts({QUOTE_ID})",
        }

    @patch("requests.Session.request")
    def test_update(self, mock_request, client):
        mock_request.return_value = make_response(204)
        target = Entity("account", ACCOUNT_ID, {"name": "Renamed"})

        assert client.execute(OrganizationRequest("Update", {"Target": target})) == {}

        args, kwargs = mock_request.call_args
        assert args == ("PATCH", f"{WEB_API}/accounts({ACCOUNT_ID})")
        assert kwargs["json"] == {"name": "Renamed"}

    @patch("requests.Session.request")
    def test_delete(self, mock_request, client):
        mock_request.return_value = make_response(204)
        target = EntityReference("account", ACCOUNT_ID)

        client.execute(OrganizationRequest("Delete", {"Target": target}))

        args, kwargs = mock_request.call_args
        assert args == ("DELETE", f"{WEB_API}/accounts({ACCOUNT_ID})")
        assert kwargs["json"] is None

    @patch("requests.Session.request")
    def test_delete_by_alternate_key(self, mock_request, client):
        mock_request.return_value = make_response(204)
        target = EntityReference("account", key_attributes={"accountnumber": "42"})

        client.execute(OrganizationRequest("Delete", {"Target": target}))

        args, _ = mock_request.call_args
        assert args == ("DELETE", f"{WEB_API}/accounts(accountnumber='42')")


# ============================================================================
# TEST: Actions and headers
# ============================================================================


class TestActionsAndHeaders:
    """Tests for action bodies and request headers"""

    @patch("requests.Session.request")
    def test_action_body(self, mock_request, client):
        mock_request.return_value = make_response(204)
        activity_id = uuid.uuid4()
        quote_close = Entity("quoteclose", activity_id, {
            "quoteid": EntityReference("quote", QUOTE_ID),
            "subject": "Lost to competitor",
        })

        client.execute(OrganizationRequest(
            "CloseQuote",
            {"QuoteClose": quote_close, "Status": OptionSetValue(5)},
        ))

        args, kwargs = mock_request.call_args
        assert args == ("POST", f"{WEB_API}/CloseQuote")
        assert kwargs["json"] == {
            "QuoteClose": {
                "@odata.type": "Microsoft.Dynamics.CRM.quoteclose",
                "quoteid@odata.bind": f"/quotes({QUOTE_ID})",
                "subject": "Lost to competitor",
                "activityid": str(activity_id),
            },
            "Status": 5,
        }

    @patch("requests.Session.request")
    def test_entity_reference_parameter(self, mock_request, client):
        mock_request.return_value = make_response(200, {"value": 1})

        result = client.execute(OrganizationRequest(
            "CalculateRollupField",
            {"Target": EntityReference("account", ACCOUNT_ID), "FieldName": "revenue"},
        ))

        assert result == {"value": 1}
        _, kwargs = mock_request.call_args
        assert kwargs["json"]["Target"] == {"@odata.id": f"accounts({ACCOUNT_ID})"}
        assert kwargs["json"]["FieldName"] == "revenue"

    @patch("requests.Session.request")
    def test_entity_reference_parameter_by_alternate_key(self, mock_request, client):
        mock_request.return_value = make_response(204)
        target = EntityReference("account", key_attributes={"accountnumber": "42"})

        client.execute(OrganizationRequest("Merge", {"Target": target}))

        _, kwargs = mock_request.call_args
        assert kwargs["json"]["Target"] == {"@odata.id": "accounts(accountnumber='42')"}

    @patch("requests.Session.request")
    def test_bypass_and_request_id_headers(self, mock_request, client):
        mock_request.return_value = make_response(204)
        request = OrganizationRequest("Update", {"Target": Entity("account", ACCOUNT_ID, {"name": "x"})})

        client.execute(request, bypass_plugin_execution=True)

        headers = mock_request.call_args.kwargs["headers"]
        assert headers[RequestHeaders.BYPASS_CUSTOM_PLUGIN_EXECUTION] == "true"
        assert headers[RequestHeaders.CLIENT_REQUEST_ID] == str(request.request_id)

    def test_bearer_token(self, client):
        assert client.session.headers["Authorization"] == "Bearer token123"

    def test_no_token(self, metadata):
        client = DataverseClient(DataverseApiConfig(service_uri="https://x.crm.dynamics.com"), metadata)
        assert "Authorization" not in client.session.headers

    def test_metadata_cache_dir_from_config(self, tmp_path):
        config = DataverseApiConfig(service_uri="https://x.crm.dynamics.com", cache_dir=str(tmp_path / "meta"))

        client = DataverseClient(config)

        assert client.metadata.cache_dir == tmp_path / "meta"
        assert client.metadata.cache_dir.is_dir()

    def test_metadata_cache_off_by_default(self):
        client = DataverseClient(DataverseApiConfig(service_uri="https://x.crm.dynamics.com"))
        assert client.metadata.cache_dir is None

    def test_header_names(self):
        names = {name for name in vars(RequestHeaders) if name.isupper()}
        assert names == {
            "AUTHORIZATION", "CLIENT_REQUEST_ID", "CLIENT_SESSION_ID", "BYPASS_CUSTOM_PLUGIN_EXECUTION",
        }

    @patch("requests.Session.request")
    def test_service_error(self, mock_request, client):
        response = make_response(400, {"error": {"message": "Bad attribute"}})
        mock_request.return_value = response

        with pytest.raises(ExecutionError) as exc_info:
            client.execute(OrganizationRequest("Update", {"Target": Entity("account", ACCOUNT_ID)}))

        assert exc_info.value.status_code == 400
        assert "Bad attribute" in str(exc_info.value)

    @patch("requests.Session.request")
    def test_transport_error(self, mock_request, client):
        mock_request.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(ExecutionError):
            client.execute(OrganizationRequest("Delete", {"Target": EntityReference("account", ACCOUNT_ID)}))


# ============================================================================
# TEST: Batches
# ============================================================================


class TestBatchExecution:
    """Tests for batch queueing and execution"""

    @patch("requests.Session.request")
    def test_runs_in_queue_order(self, mock_request, client):
        mock_request.return_value = make_response(204)
        batch_id = client.create_batch("renames")
        for name in ("first", "second"):
            request = OrganizationRequest("Update", {"Target": Entity("account", ACCOUNT_ID, {"name": name})})
            assert client.add_request_to_batch(batch_id, request) is True

        results = client.execute_batch(batch_id)

        assert [r.succeeded for r in results] == [True, True]
        bodies = [c.kwargs["json"] for c in mock_request.call_args_list]
        assert bodies == [{"name": "first"}, {"name": "second"}]
        with pytest.raises(InvalidBatchReferenceError):
            client.batch_store.get_batch(batch_id)

    @patch("requests.Session.request")
    def test_stops_without_continue_on_error(self, mock_request, client):
        mock_request.side_effect = [make_response(500, {"error": {"message": "boom"}}), make_response(204)]
        batch_id = client.create_batch(continue_on_error=False)
        for _ in range(2):
            client.add_request_to_batch(
                batch_id, OrganizationRequest("Delete", {"Target": EntityReference("account", ACCOUNT_ID)})
            )

        results = client.execute_batch(batch_id)

        assert len(results) == 1
        assert results[0].error.status_code == 500
        assert mock_request.call_count == 1

    @patch("requests.Session.request")
    def test_continues_on_error(self, mock_request, client):
        mock_request.side_effect = [make_response(500, {"error": {"message": "boom"}}), make_response(204)]
        batch_id = client.create_batch()
        for _ in range(2):
            client.add_request_to_batch(
                batch_id, OrganizationRequest("Delete", {"Target": EntityReference("account", ACCOUNT_ID)})
            )

        results = client.execute_batch(batch_id)

        assert [r.succeeded for r in results] == [False, True]

    @patch("requests.Session.request")
    def test_untranslatable_request_recorded_and_batch_continues(self, mock_request, client):
        mock_request.return_value = make_response(204)
        batch_id = client.create_batch()
        for attributes in (
            {"name": "A"},
            {"name": "B", "nosuch": EntityReference("account", ACCOUNT_ID)},
            {"name": "C"},
        ):
            request = OrganizationRequest("Create", {"Target": Entity("account", attributes=attributes)})
            client.add_request_to_batch(batch_id, request)

        results = client.execute_batch(batch_id)

        assert [r.succeeded for r in results] == [True, False, True]
        assert isinstance(results[1].error, UnresolvedLookupMetadataError)
        assert [c.kwargs["json"]["name"] for c in mock_request.call_args_list] == ["A", "C"]
        with pytest.raises(InvalidBatchReferenceError):
            client.batch_store.get_batch(batch_id)

    @patch("requests.Session.request")
    def test_untranslatable_request_stops_batch(self, mock_request, client):
        mock_request.return_value = make_response(204)
        batch_id = client.create_batch(continue_on_error=False)
        for attributes in ({"name": "A"}, {"nosuch": EntityReference("account", ACCOUNT_ID)}, {"name": "C"}):
            request = OrganizationRequest("Create", {"Target": Entity("account", attributes=attributes)})
            client.add_request_to_batch(batch_id, request)

        results = client.execute_batch(batch_id)

        assert len(results) == 2
        assert isinstance(results[1].error, UnresolvedLookupMetadataError)
        assert mock_request.call_count == 1

    def test_no_batch_requested(self, client):
        assert client.add_request_to_batch(uuid.UUID(int=0), OrganizationRequest("Create")) is False

    def test_unknown_batch(self, client):
        with pytest.raises(InvalidBatchReferenceError):
            client.execute_batch(uuid.uuid4())


# ============================================================================
# TEST: retrieve_multiple
# ============================================================================


class TestRetrieveMultiple:
    """Tests for collection reads and auto-retry"""

    @patch("time.sleep")
    @patch("requests.Session.request")
    def test_retries_auto_retry_entities(self, mock_request, mock_sleep, client):
        mock_request.side_effect = [
            make_response(404, {"error": {"message": "not yet"}}),
            make_response(200, {"value": [{"asyncoperationid": "1"}]}),
        ]

        rows = client.retrieve_multiple("asyncoperations", "$filter=statecode eq 3")

        assert rows == [{"asyncoperationid": "1"}]
        assert mock_request.call_count == 2
        assert mock_request.call_args.args[1] == f"{WEB_API}/asyncoperations?$filter=statecode eq 3"

    @patch("time.sleep")
    @patch("requests.Session.request")
    def test_gives_up_after_retry_count(self, mock_request, mock_sleep, client):
        mock_request.return_value = make_response(500, {"error": {"message": "down"}})

        with pytest.raises(ExecutionError):
            client.retrieve_multiple("importjobs")

        assert mock_request.call_count == 3

    @patch("requests.Session.request")
    def test_other_entities_not_retried(self, mock_request, client):
        mock_request.return_value = make_response(500, {"error": {"message": "down"}})

        with pytest.raises(ExecutionError):
            client.retrieve_multiple("accounts", "$top=5")

        assert mock_request.call_count == 1

"""Dataverse Web API client."""
import logging
import re
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from config import DataverseApiConfig
from cdsbridge.api.batch_router import BatchRouter, BatchStore, should_auto_retry
from cdsbridge.api.errors import CdsClientError, ExecutionError
from cdsbridge.builder.field_builder import encode_value, format_guid
from cdsbridge.builder.payload_builder import PayloadBuilder, is_request_valid_for_web_api
from cdsbridge.introspection.metadata_introspector import WebApiMetadataProvider
from cdsbridge.introspection.metadata_provider import MetadataProvider
from cdsbridge.schema.models import (
    EMPTY_GUID,
    Entity,
    EntityFilters,
    EntityReference,
    OptionSetValue,
    OrganizationRequest,
)

logger = logging.getLogger(__name__)

_ENTITY_ID_PATTERN = re.compile(r"\(([0-9a-fA-F-]{36})\)\s*$")


class RequestHeaders:
    """Header names used when talking to the Web API."""

    AUTHORIZATION = "Authorization"
    CLIENT_REQUEST_ID = "x-ms-client-request-id"
    CLIENT_SESSION_ID = "x-ms-client-session-id"
    BYPASS_CUSTOM_PLUGIN_EXECUTION = "MSCRM.BypassCustomPluginExecution"


@dataclass
class BatchResult:
    """Outcome of one request of an executed batch."""

    request_id: uuid.UUID
    request_name: str
    response: Optional[Dict[str, Any]] = None
    error: Optional[CdsClientError] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class DataverseClient:
    """Executes requests against the Dataverse Web API."""

    def __init__(
        self,
        config: DataverseApiConfig,
        metadata: Optional[MetadataProvider] = None,
        batch_store: Optional[BatchStore] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize client.

        Args:
            config: Web API configuration
            metadata: Metadata provider (defaults to reading it from the Web API)
            batch_store: Store for queued requests
            session: HTTP session to reuse
        """
        self.config = config
        self.session = session or requests.Session()
        self.session_id = uuid.uuid4()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json; charset=utf-8",
            "OData-MaxVersion": "4.0",
            "OData-Version": "4.0",
            RequestHeaders.CLIENT_SESSION_ID: str(self.session_id),
        })

        if config.api_key:
            self.session.headers.update({RequestHeaders.AUTHORIZATION: f"Bearer {config.api_key}"})

        self.metadata = metadata or WebApiMetadataProvider(
            config.web_api_url,
            timeout=config.timeout,
            cache_dir=config.cache_dir,
            session=self.session,
        )
        self.builder = PayloadBuilder(self.metadata)
        self.batch_store = batch_store or BatchStore(config.batch_size)
        self.router = BatchRouter(self.batch_store)

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def create_batch(
        self,
        name: str = "",
        return_results: bool = True,
        continue_on_error: bool = True,
    ) -> uuid.UUID:
        """Open a batch that requests can be queued on."""
        return self.batch_store.create_batch(name, return_results, continue_on_error)

    def add_request_to_batch(
        self,
        batch_id: Optional[uuid.UUID],
        request: OrganizationRequest,
        bypass_plugin_execution: bool = False,
    ) -> bool:
        """Queue a request; False means it has to be executed now."""
        return self.router.route(batch_id, request, bypass_plugin_execution)

    def execute_batch(self, batch_id: uuid.UUID) -> List[BatchResult]:
        """
        Run and release a batch.

        Requests run in the order they were queued. Without continue_on_error,
        execution stops at the first failure.

        Raises:
            InvalidBatchReferenceError: If the batch is unknown or already released
        """
        batch = self.batch_store.release_batch(batch_id)
        results: List[BatchResult] = []

        for item in batch.items:
            result = BatchResult(item.request.request_id, item.request.request_name)
            try:
                response = self.execute(item.request, item.bypass_plugin_execution)
                if batch.return_results:
                    result.response = response
            except CdsClientError as e:
                result.error = e
            results.append(result)

            if result.error is not None and not batch.continue_on_error:
                logger.warning(f"Batch {batch_id} stopped at {item.request.request_name}: {result.error}")
                break

        failed = sum(1 for r in results if not r.succeeded)
        logger.info(f"Executed batch {batch_id}: {len(results) - failed} succeeded, {failed} failed")
        return results

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(
        self,
        request: OrganizationRequest,
        bypass_plugin_execution: bool = False,
    ) -> Dict[str, Any]:
        """
        Execute a request now.

        Create/Update/Delete are sent as entity operations, everything else as a
        Web API action named after the request.

        Returns:
            Response body (for Create: {"id": UUID})

        Raises:
            ExecutionError: If the service rejects the request or cannot be reached
            CdsClientError: If the request cannot be translated into a Web API call
        """
        if is_request_valid_for_web_api(request):
            return self._execute_entity_operation(request, bypass_plugin_execution)

        body = self._action_body(request)
        response = self._send(
            "POST",
            request.request_name,
            body=body,
            request_id=request.request_id,
            bypass_plugin_execution=bypass_plugin_execution,
        )
        return self._json(response)

    def retrieve_multiple(self, entity_set: str, query: str = "") -> List[Dict[str, Any]]:
        """
        GET a collection.

        Queries on entities prone to read-after-write races are retried
        retry_count times, retry_pause seconds apart.
        """
        path = f"{entity_set}?{query}" if query else entity_set
        attempts = 1 + (self.config.retry_count if should_auto_retry(path) else 0)

        for attempt in range(1, attempts + 1):
            try:
                response = self._send("GET", path)
                return self._json(response).get("value", [])
            except ExecutionError as e:
                if attempt >= attempts:
                    raise
                logger.warning(f"Retrying {path} ({attempt}/{attempts - 1}): {e}")
                time.sleep(self.config.retry_pause)

        return []

    def _execute_entity_operation(
        self,
        request: OrganizationRequest,
        bypass_plugin_execution: bool,
    ) -> Dict[str, Any]:
        name = request.request_name.lower()
        target = request["Target"]
        entity_set = self.builder.entity_set_name(target.logical_name)

        if name == "delete":
            reference = target if isinstance(target, EntityReference) else target.to_reference()
            path = f"{entity_set}({self.builder.encode_identity(reference)})"
            self._send("DELETE", path, request_id=request.request_id,
                       bypass_plugin_execution=bypass_plugin_execution)
            return {}

        body = self.builder.translate_entity(target).to_dict()

        if name == "update":
            path = f"{entity_set}({format_guid(target.id)})"
            self._send("PATCH", path, body=body, request_id=request.request_id,
                       bypass_plugin_execution=bypass_plugin_execution)
            return {}

        response = self._send("POST", entity_set, body=body, request_id=request.request_id,
                              bypass_plugin_execution=bypass_plugin_execution)
        return {"id": self._created_id(response) or target.id}

    def _action_body(self, request: OrganizationRequest) -> Dict[str, Any]:
        """Translate request parameters into a Web API action body."""
        body: Dict[str, Any] = {}
        for key, value in request.parameters.items():
            if isinstance(value, Entity):
                body[key] = self._entity_parameter(value)
            elif isinstance(value, EntityReference):
                entity_set = self.builder.entity_set_name(value.logical_name)
                body[key] = {"@odata.id": f"{entity_set}({self.builder.encode_identity(value)})"}
            elif isinstance(value, OptionSetValue):
                body[key] = value.value
            else:
                body[key] = encode_value(value)
        return body

    def _entity_parameter(self, entity: Entity) -> Dict[str, Any]:
        data = {"@odata.type": f"Microsoft.Dynamics.CRM.{entity.logical_name}"}
        data.update(self.builder.translate_entity(entity).to_dict())

        if entity.id != EMPTY_GUID:
            entity_data = self.metadata.get_entity_metadata(EntityFilters.ENTITY, entity.logical_name)
            primary_id = entity_data.primary_id_attribute if entity_data else ""
            primary_id = primary_id or "activityid"
            data.setdefault(primary_id, format_guid(entity.id))
        return data

    def _send(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        request_id: Optional[uuid.UUID] = None,
        bypass_plugin_execution: bool = False,
    ) -> requests.Response:
        url = f"{self.config.web_api_url}/{path}"
        headers = {RequestHeaders.CLIENT_REQUEST_ID: str(request_id or uuid.uuid4())}
        if bypass_plugin_execution:
            headers[RequestHeaders.BYPASS_CUSTOM_PLUGIN_EXECUTION] = "true"

        logger.debug(f"{method} {url}")
        try:
            response = self.session.request(
                method,
                url,
                json=body,
                headers=headers,
                timeout=self.config.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise ExecutionError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            raise ExecutionError(
                f"{method} {path} failed: {self._error_message(response)}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ExecutionError(f"Invalid JSON response: {e}", status_code=response.status_code) from e

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            return response.json().get("error", {}).get("message") or response.reason
        except ValueError:
            return response.text or str(response.status_code)

    @staticmethod
    def _created_id(response: requests.Response) -> Optional[uuid.UUID]:
        entity_id = response.headers.get("OData-EntityId", "")
        match = _ENTITY_ID_PATTERN.search(entity_id)
        return uuid.UUID(match.group(1)) if match else None

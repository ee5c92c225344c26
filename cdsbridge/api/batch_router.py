"""Queue-or-execute routing of requests into caller-defined batches."""
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from cdsbridge.api.errors import BatchCapacityError, InvalidBatchReferenceError
from cdsbridge.schema.models import EMPTY_GUID, BatchTicket, OrganizationRequest

logger = logging.getLogger(__name__)

# Entities whose reads can race the write that created them on the service side
AUTO_RETRY_ENTITIES = frozenset({
    "asyncoperation",  # async jobs
    "importjob",
})

DEFAULT_MAX_BATCH_SIZE = 1000


def should_auto_retry(query_fragment: str) -> bool:
    """
    Check whether a query touches an entity that needs read retries.

    Args:
        query_fragment: Query string or URL fragment naming the entity

    Returns:
        bool: True if an auto-retry entity name appears in the query
    """
    if not query_fragment:
        return False
    return any(name in query_fragment for name in AUTO_RETRY_ENTITIES)


@dataclass
class BatchItem:
    """A queued request."""

    request: OrganizationRequest
    bypass_plugin_execution: bool = False


@dataclass
class RequestBatch:
    """Requests held for deferred execution."""

    batch_id: uuid.UUID
    name: str = ""
    return_results: bool = True
    continue_on_error: bool = True
    created_at: datetime = field(default_factory=datetime.now)
    items: List[BatchItem] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "batch_id": str(self.batch_id),
            "name": self.name,
            "return_results": self.return_results,
            "continue_on_error": self.continue_on_error,
            "created_at": self.created_at.isoformat(),
            "requests": [
                {
                    "request_name": item.request.request_name,
                    "request_id": str(item.request.request_id),
                    "bypass_plugin_execution": item.bypass_plugin_execution,
                }
                for item in self.items
            ],
        }


class BatchStore:
    """In-memory batches. Appends are serialized under a lock."""

    def __init__(self, max_batch_size: int = DEFAULT_MAX_BATCH_SIZE):
        self.max_batch_size = max_batch_size
        self._batches: Dict[uuid.UUID, RequestBatch] = {}
        self._lock = threading.Lock()

    def create_batch(
        self,
        name: str = "",
        return_results: bool = True,
        continue_on_error: bool = True,
    ) -> uuid.UUID:
        """Open a new batch and return its id."""
        batch = RequestBatch(uuid.uuid4(), name, return_results, continue_on_error)
        with self._lock:
            self._batches[batch.batch_id] = batch
        logger.debug(f"Created batch {batch.batch_id} ({name})")
        return batch.batch_id

    def append(
        self,
        batch_id: uuid.UUID,
        request: OrganizationRequest,
        bypass_plugin_execution: bool = False,
    ) -> None:
        """
        Add a request to an open batch.

        Raises:
            InvalidBatchReferenceError: If the batch is unknown or released
            BatchCapacityError: If the batch is full
        """
        with self._lock:
            batch = self._batches.get(batch_id)
            if batch is None:
                raise InvalidBatchReferenceError(batch_id)
            if len(batch.items) >= self.max_batch_size:
                raise BatchCapacityError(
                    f"Batch {batch_id} already holds {self.max_batch_size} requests"
                )
            batch.items.append(BatchItem(request, bypass_plugin_execution))

    def get_batch(self, batch_id: uuid.UUID) -> RequestBatch:
        """
        Get an open batch.

        Raises:
            InvalidBatchReferenceError: If the batch is unknown or released
        """
        with self._lock:
            batch = self._batches.get(batch_id)
        if batch is None:
            raise InvalidBatchReferenceError(batch_id)
        return batch

    def release_batch(self, batch_id: uuid.UUID) -> RequestBatch:
        """Close a batch and hand back its contents."""
        with self._lock:
            batch = self._batches.pop(batch_id, None)
        if batch is None:
            raise InvalidBatchReferenceError(batch_id)
        return batch

    def list_batches(self) -> List[RequestBatch]:
        with self._lock:
            return list(self._batches.values())


class BatchRouter:
    """Decides whether a request is queued or must run immediately."""

    def __init__(self, batch_store: BatchStore):
        self.batch_store = batch_store

    def route(
        self,
        batch_id: Optional[uuid.UUID],
        request: OrganizationRequest,
        bypass_plugin_execution: bool = False,
    ) -> bool:
        """
        Queue a request on a batch.

        Batch existence is checked by the store, not here.

        Args:
            batch_id: Target batch, or EMPTY_GUID / None for no batching
            request: Request to queue
            bypass_plugin_execution: Skip custom plugins when the batch runs

        Returns:
            bool: True if queued, False if the caller must execute now
        """
        if batch_id is None or batch_id == EMPTY_GUID:
            return False

        self.batch_store.append(batch_id, request, bypass_plugin_execution)
        logger.debug(f"Queued {request.request_name} ({request.request_id}) on batch {batch_id}")
        return True

    def ticket(
        self,
        batch_id: Optional[uuid.UUID],
        request: OrganizationRequest,
        bypass_plugin_execution: bool = False,
    ) -> BatchTicket:
        """Route and report the outcome as a BatchTicket."""
        queued = self.route(batch_id, request, bypass_plugin_execution)
        return BatchTicket(batch_id if batch_id is not None else EMPTY_GUID, queued)

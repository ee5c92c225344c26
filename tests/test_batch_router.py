"""
Unit tests for batch routing

Tests:
- BatchRouter: queue-or-execute decision
- BatchStore: open/append/release, capacity, concurrent appends
- should_auto_retry: auto-retry entity table
"""

import threading
import uuid
from unittest.mock import Mock

import pytest

from cdsbridge.api.batch_router import (
    AUTO_RETRY_ENTITIES,
    BatchRouter,
    BatchStore,
    should_auto_retry,
)
from cdsbridge.api.errors import BatchCapacityError, InvalidBatchReferenceError
from cdsbridge.schema.models import EMPTY_GUID, OrganizationRequest


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def store():
    return BatchStore(max_batch_size=3)


@pytest.fixture
def router(store):
    return BatchRouter(store)


@pytest.fixture
def request_():
    return OrganizationRequest("CloseQuote")


# ============================================================================
# TEST: BatchRouter
# ============================================================================


class TestBatchRouter:
    """Tests for BatchRouter.route"""

    def test_empty_guid_means_execute_now(self, request_):
        store = Mock()
        router = BatchRouter(store)

        assert router.route(EMPTY_GUID, request_) is False
        store.append.assert_not_called()

    def test_none_means_execute_now(self, router, request_):
        assert router.route(None, request_) is False

    def test_queued_on_open_batch(self, router, store, request_):
        batch_id = store.create_batch("quotes")

        assert router.route(batch_id, request_, bypass_plugin_execution=True) is True

        batch = store.get_batch(batch_id)
        assert len(batch.items) == 1
        assert batch.items[0].request is request_
        assert batch.items[0].bypass_plugin_execution is True

    def test_delegates_to_store(self, request_):
        store = Mock()
        batch_id = uuid.uuid4()

        assert BatchRouter(store).route(batch_id, request_) is True
        store.append.assert_called_once_with(batch_id, request_, False)

    def test_unknown_batch_propagates(self, router, request_):
        with pytest.raises(InvalidBatchReferenceError) as exc_info:
            router.route(uuid.uuid4(), request_)
        assert exc_info.value.batch_id is not None

    def test_ticket(self, router, store, request_):
        batch_id = store.create_batch()

        assert router.ticket(EMPTY_GUID, request_).queued is False
        ticket = router.ticket(batch_id, request_)
        assert ticket.batch_id == batch_id
        assert ticket.queued is True


# ============================================================================
# TEST: BatchStore
# ============================================================================


class TestBatchStore:
    """Tests for BatchStore"""

    def test_capacity(self, store, request_):
        batch_id = store.create_batch()
        for _ in range(3):
            store.append(batch_id, request_)

        with pytest.raises(BatchCapacityError):
            store.append(batch_id, request_)

    def test_released_batch_is_closed(self, store, request_):
        batch_id = store.create_batch(continue_on_error=False)
        store.append(batch_id, request_)

        batch = store.release_batch(batch_id)

        assert batch.continue_on_error is False
        assert len(batch.items) == 1
        with pytest.raises(InvalidBatchReferenceError):
            store.append(batch_id, request_)
        with pytest.raises(InvalidBatchReferenceError):
            store.release_batch(batch_id)

    def test_list_batches(self, store):
        first = store.create_batch("a")
        second = store.create_batch("b")
        assert {b.batch_id for b in store.list_batches()} == {first, second}

    def test_to_dict(self, store, request_):
        batch_id = store.create_batch("quotes")
        store.append(batch_id, request_)

        data = store.get_batch(batch_id).to_dict()

        assert data["name"] == "quotes"
        assert data["requests"][0]["request_name"] == "CloseQuote"

    def test_concurrent_appends(self):
        store = BatchStore(max_batch_size=1000)
        batch_id = store.create_batch()
        requests_ = [OrganizationRequest("Create") for _ in range(200)]

        def worker(chunk):
            for r in chunk:
                store.append(batch_id, r)

        threads = [threading.Thread(target=worker, args=(requests_[i::4],)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        items = store.get_batch(batch_id).items
        assert len(items) == 200
        assert {item.request.request_id for item in items} == {r.request_id for r in requests_}


# ============================================================================
# TEST: should_auto_retry
# ============================================================================


class TestShouldAutoRetry:
    """Tests for auto-retry eligibility"""

    @pytest.mark.parametrize("query", [
        "asyncoperations?$filter=statecode eq 3",
        "importjobs(00000000-0000-0000-0000-000000000001)",
        "<fetch><entity name='asyncoperation'/></fetch>",
    ])
    def test_retry_entities(self, query):
        assert should_auto_retry(query) is True

    @pytest.mark.parametrize("query", ["accounts?$top=1", "", None])
    def test_other_queries(self, query):
        assert should_auto_retry(query) is False

    def test_table_is_immutable(self):
        assert isinstance(AUTO_RETRY_ENTITIES, frozenset)
        with pytest.raises(AttributeError):
            AUTO_RETRY_ENTITIES.add("account")

"""Unit tests for mapping pipeline errors to HTTP responses."""

import json
from uuid import uuid4

import pytest
from starlette.requests import Request

from votesync.api import sync_error_handler, sync_error_status
from votesync.sync import (
    FetchError,
    RunFinalizedError,
    RunInProgressError,
    RunNotFoundError,
    StaleRunError,
    SyncError,
    TaskNotFoundError,
    TaskStateError,
    UnknownSourceError,
)


def make_request() -> Request:
    return Request({"type": "http", "method": "POST", "path": "/api/v1/sync/news", "headers": []})


class TestSyncErrorStatus:
    """Tests for the status and error code of each pipeline error."""

    @pytest.mark.parametrize(
        "error, expected",
        [
            (StaleRunError("news", uuid4(), 180.0), (409, "STALE_RUN")),
            (RunInProgressError("news", uuid4()), (409, "RUN_IN_PROGRESS")),
            (RunFinalizedError(uuid4(), "completed"), (409, "RUN_FINALIZED")),
            (TaskStateError(uuid4(), "pending", "requeue"), (409, "INVALID_TASK_STATE")),
            (RunNotFoundError(uuid4()), (404, "NOT_FOUND")),
            (TaskNotFoundError(uuid4()), (404, "NOT_FOUND")),
            (UnknownSourceError("polls", ["candidates", "news"]), (404, "NOT_FOUND")),
            (FetchError("news", "timeout"), (502, "FETCH_FAILED")),
            (SyncError("boom"), (500, "SYNC_ERROR")),
        ],
    )
    def test_status(self, error, expected):
        assert sync_error_status(error) == expected

    @pytest.mark.asyncio
    async def test_handler_body(self):
        response = await sync_error_handler(make_request(), RunInProgressError("news", uuid4()))

        assert response.status_code == 409
        assert response.headers["X-Error-Code"] == "RUN_IN_PROGRESS"
        body = json.loads(response.body)
        assert body["success"] is False
        assert "already in progress" in body["error"]

"""Unit tests for the sync error taxonomy and its presentation."""

import pytest

from todosync.core.errors import (
    ApiError,
    ConnectivityError,
    ErrorKind,
    StorageError,
    SyncError,
    TransportError,
    describe_error,
)


@pytest.mark.unit
class TestErrorKinds:
    """Each error class carries exactly one kind."""

    @pytest.mark.parametrize(
        ("error", "kind", "transient"),
        [
            (StorageError("disk full"), ErrorKind.STORAGE, False),
            (ConnectivityError("refused"), ErrorKind.CONNECTIVITY, True),
            (TransportError("timed out"), ErrorKind.TRANSPORT, True),
            (ApiError(400, "unsynchronized data"), ErrorKind.API, False),
        ],
    )
    def test_kind_and_transience(self, error, kind, transient):
        assert isinstance(error, SyncError)
        assert error.kind == kind
        assert error.transient is transient

    def test_api_error_carries_status_and_code(self):
        error = ApiError(404, "not_found")

        assert error.status == 404
        assert error.code == "not_found"
        assert "404 not_found" in str(error)


@pytest.mark.unit
class TestDescribeError:
    """Tests for describe_error function."""

    def test_every_kind_has_a_distinct_message(self):
        errors = [StorageError("x"), ConnectivityError("x"), TransportError("x"), ApiError(500, "boom")]

        messages = [describe_error(error) for error in errors]

        assert [message.kind for message in messages] == list(ErrorKind)
        assert len({message.message for message in messages}) == len(errors)

    def test_network_errors_are_retryable(self):
        assert describe_error(ConnectivityError("x")).retryable is True
        assert describe_error(TransportError("x")).retryable is True
        assert describe_error(ApiError(400, "bad")).retryable is False
        assert describe_error(StorageError("x")).retryable is False

    def test_network_messages_reassure_changes_are_saved(self):
        message = describe_error(ConnectivityError("x"))

        assert "saved on this device" in message.message
        assert "connection" in message.suggestion.lower()

    def test_api_message_includes_status_and_code(self):
        message = describe_error(ApiError(400, "unsynchronized data"))

        assert "400" in message.message
        assert "unsynchronized data" in message.message

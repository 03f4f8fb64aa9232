"""Tests for operation provenance tracking."""

from __future__ import annotations

import logging
from datetime import UTC

import pytest

from user_operator.provenance import (
    OPERATOR_VERSION,
    OperationProvenance,
    ProvenanceLogger,
    get_provenance_logger,
)


class TestOperationProvenance:
    """Tests for OperationProvenance dataclass."""

    def test_defaults(self) -> None:
        record = OperationProvenance(operation="create")
        assert record.operator_version == OPERATOR_VERSION
        assert record.timestamp.tzinfo == UTC
        assert record.remote_calls == []
        assert record.error is None

    def test_records_calls_in_order(self) -> None:
        record = OperationProvenance(operation="update", identity="p_1/alice")
        record.record_call("AddToGroup:c")
        record.record_call("RemoveFromGroup:a")
        record.record_failure("AddToGroup:c")

        assert record.remote_calls == ["AddToGroup:c", "RemoveFromGroup:a"]
        assert record.failed_calls == ["AddToGroup:c"]

    def test_to_dict(self) -> None:
        record = OperationProvenance(operation="delete", identity="p_1/alice")
        data = record.to_dict()
        assert data["operation"] == "delete"
        assert isinstance(data["timestamp"], str)


class TestProvenanceLogger:
    """Tests for ProvenanceLogger."""

    def test_success_logged_at_info(self, caplog: pytest.LogCaptureFixture) -> None:
        provenance = ProvenanceLogger()
        record = provenance.start("read", "p_1/alice")

        with caplog.at_level(logging.INFO, logger="user_operator.provenance"):
            provenance.log_provenance(record)

        assert caplog.records[-1].levelno == logging.INFO
        assert caplog.records[-1].identity == "p_1/alice"

    def test_drift_logged_at_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        provenance = ProvenanceLogger()
        record = provenance.start("read", "p_1/alice")
        record.drift_detected = True

        with caplog.at_level(logging.INFO, logger="user_operator.provenance"):
            provenance.log_provenance(record)

        assert caplog.records[-1].levelno == logging.WARNING

    def test_error_logged_at_error(self, caplog: pytest.LogCaptureFixture) -> None:
        provenance = ProvenanceLogger()
        record = provenance.start("delete", "p_1/alice")
        record.error = "DeleteUser failed"

        with caplog.at_level(logging.INFO, logger="user_operator.provenance"):
            provenance.log_provenance(record)

        assert caplog.records[-1].levelno == logging.ERROR

    def test_disabled_logger_is_silent(self, caplog: pytest.LogCaptureFixture) -> None:
        provenance = ProvenanceLogger(enabled=False)

        with caplog.at_level(logging.DEBUG, logger="user_operator.provenance"):
            provenance.log_provenance(provenance.start("create"))

        assert caplog.records == []

    def test_global_singleton(self) -> None:
        assert get_provenance_logger() is get_provenance_logger()

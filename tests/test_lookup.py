from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

import pytest

from dnc_checker.errors import UpstreamError, ValidationError
from dnc_checker.lookup import LookupGateway, StoredProcedureDecisionService
from dnc_checker.models import to_result_value
from dnc_checker.pool import ConnectionPool

from conftest import FakeDecisionService


@pytest.mark.parametrize("raw", ["2125551234", "(212) 555-1234", "212-555-1234"])
def test_history_sends_only_digits(decision_service: FakeDecisionService, raw: str) -> None:
    LookupGateway(decision_service).history(raw)

    assert decision_service.history_calls == ["2125551234"]


def test_lookup_forwards_rows_verbatim(decision_service: FakeDecisionService) -> None:
    decision_service.rows = [
        {"PhoneNumber": "5551234567", "OnList": True, "Score": 0.5, "Missing": None},
        {"Anything": "goes"},
    ]

    rows = LookupGateway(decision_service).lookup("555-123-4567", "01/15/2024")

    assert rows == decision_service.rows
    assert decision_service.lookup_calls == [("5551234567", date(2024, 1, 15))]


def test_empty_result_is_an_empty_list(decision_service: FakeDecisionService) -> None:
    decision_service.rows = []

    assert LookupGateway(decision_service).history("5551234567") == []


@pytest.mark.parametrize(
    ("phone", "lookup_date"),
    [("555123", "01/15/2024"), ("5551234567", None), ("5551234567", "2024-01-15"), ("5551234567", "02/30/2024")],
)
def test_invalid_input_never_reaches_decision_service(
    decision_service: FakeDecisionService, phone, lookup_date
) -> None:
    with pytest.raises(ValidationError):
        LookupGateway(decision_service).lookup(phone, lookup_date)

    assert decision_service.call_count == 0


def test_logs_mask_the_phone_number(decision_service: FakeDecisionService, caplog) -> None:
    with caplog.at_level(logging.INFO, logger="dnc_checker.lookup"):
        LookupGateway(decision_service).lookup("(555) 123-4567", "01/15/2024")
        LookupGateway(decision_service).history("555.123.4567")

    assert "5551234567" not in caplog.text
    assert "123-4567" not in caplog.text.replace("***-***-4567", "")
    assert "***-***-4567" in caplog.text
    completions = [record for record in caplog.records if hasattr(record, "elapsed_ms")]
    assert len(completions) == 2
    assert all(record.rows == 1 for record in completions)


def test_decision_service_failures_propagate(decision_service: FakeDecisionService) -> None:
    decision_service.error = UpstreamError(detail="procedure timed out")

    with pytest.raises(UpstreamError):
        LookupGateway(decision_service).history("5551234567")


def test_stored_procedures_return_rows(store, pool: ConnectionPool) -> None:
    gateway = LookupGateway(StoredProcedureDecisionService(pool))

    rows = gateway.lookup("5551234567", "01/15/2024")

    assert len(rows) == 1
    assert rows[0]["PhoneNumber"] == "5551234567"
    assert rows[0]["LookupDate"] == "2024-01-15"
    assert rows[0]["Status"] == "STUB - Not Implemented"
    assert list(gateway.history("5551234567")[0]) == ["PhoneNumber", "LookupDate", "Status", "Notes"]


def test_closed_pool_becomes_upstream_error(pool: ConnectionPool) -> None:
    service = StoredProcedureDecisionService(pool)
    pool.close()

    with pytest.raises(UpstreamError):
        service.history("5551234567")


@pytest.mark.parametrize(
    ("value", "expected"),
    [(Decimal("3"), 3), (Decimal("2.5"), 2.5), ("text", "text"), (None, None), (True, True)],
)
def test_result_values_are_scalars(value, expected) -> None:
    assert to_result_value(value) == expected
    assert type(to_result_value(value)) is type(expected)


def test_unsupported_result_value() -> None:
    with pytest.raises(TypeError):
        to_result_value(object())

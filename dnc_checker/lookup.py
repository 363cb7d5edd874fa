"""DNC lookup gateway and the decision service it forwards to."""

from __future__ import annotations

import logging
import time
from datetime import date
from typing import Any, Dict, List, Optional, Protocol

from .errors import UpstreamError
from .models import PhoneNumber, ResultRow, to_result_row
from .pool import DATABASE_ERRORS, ConnectionPool
from .validation import validate_lookup_query

logger = logging.getLogger("dnc_checker.lookup")

LOOKUP_PROCEDURE = "sp_dnc_lookup"
HISTORY_PROCEDURE = "sp_dnc_history"


class DecisionService(Protocol):
    """The external system that decides DNC status.

    It receives ten raw digits and returns rows whose columns are not known
    in advance. Failures are reported as :class:`UpstreamError`.
    """

    def lookup(self, phone_digits: str, lookup_date: date) -> List[ResultRow]:
        ...

    def history(self, phone_digits: str) -> List[ResultRow]:
        ...


class StoredProcedureDecisionService:
    """Decision service backed by the ``sp_dnc_*`` stored procedures."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def lookup(self, phone_digits: str, lookup_date: date) -> List[ResultRow]:
        return self._call(LOOKUP_PROCEDURE, {"phone_number": phone_digits, "lookup_date": lookup_date})

    def history(self, phone_digits: str) -> List[ResultRow]:
        return self._call(HISTORY_PROCEDURE, {"phone_number": phone_digits})

    def _call(self, procedure: str, arguments: Dict[str, Any]) -> List[ResultRow]:
        try:
            with self._pool.connection() as conn:
                columns, rows = self._pool.call_procedure(conn, procedure, arguments)
        except DATABASE_ERRORS as err:
            raise UpstreamError(detail=f"{procedure} failed: {err}") from err

        try:
            return [to_result_row(columns, row) for row in rows]
        except TypeError as err:
            raise UpstreamError(detail=f"{procedure} returned an unsupported value: {err}") from err


class LookupGateway:
    """Validate DNC queries and relay the decision service's rows unchanged.

    Only digit-stripping is applied to the phone number before dispatch.
    Invalid input raises :class:`~dnc_checker.errors.ValidationError` and
    never reaches the decision service.
    """

    def __init__(self, decision_service: DecisionService) -> None:
        self._service = decision_service

    def lookup(self, phone_number: Optional[str], lookup_date: Optional[str]) -> List[ResultRow]:
        query = validate_lookup_query(phone_number, lookup_date)
        assert query.lookup_date is not None

        logger.info("DNC lookup requested (phone: %s, date: %s)", query.phone, query.lookup_date.isoformat())
        started = time.perf_counter()
        rows = self._service.lookup(query.phone.digits, query.lookup_date)
        self._log_completion("DNC lookup", query.phone, rows, started)
        return rows

    def history(self, phone_number: Optional[str]) -> List[ResultRow]:
        query = validate_lookup_query(phone_number, require_date=False)

        logger.info("DNC history requested (phone: %s)", query.phone)
        started = time.perf_counter()
        rows = self._service.history(query.phone.digits)
        self._log_completion("DNC history", query.phone, rows, started)
        return rows

    def _log_completion(self, label: str, phone: PhoneNumber, rows: List[ResultRow], started: float) -> None:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "%s completed (phone: %s): %d row(s) returned (%dms)",
            label,
            phone,
            len(rows),
            elapsed_ms,
            extra={"phone": phone, "rows": len(rows), "elapsed_ms": elapsed_ms},
        )


__all__ = [
    "DecisionService",
    "HISTORY_PROCEDURE",
    "LOOKUP_PROCEDURE",
    "LookupGateway",
    "StoredProcedureDecisionService",
]

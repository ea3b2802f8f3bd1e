from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from ims_repairs.domain_errors import (
    BatchTooLarge,
    DomainError,
    InsufficientStock,
    ReservationConflict,
)
from ims_repairs.problem_details import build_problem_details_response, domain_error_handler


def test_problem_details_payload_contains_stable_code_and_rfc7807_fields() -> None:
    response = build_problem_details_response(
        DomainError(
            code="REWORK_LIMIT_EXCEEDED",
            http_status=409,
            message="Maximum rework count (3) exceeded",
            details={"rework_count": 3},
        )
    )

    assert response.status_code == 409
    assert response.media_type == "application/problem+json"

    body = response.body.decode("utf-8")
    assert '"type":"https://api.ims-repairs.local/problems/rework_limit_exceeded"' in body
    assert '"title":"Conflict"' in body
    assert '"status":409' in body
    assert '"detail":"Maximum rework count (3) exceeded"' in body
    assert '"code":"REWORK_LIMIT_EXCEEDED"' in body
    assert '"details":{"rework_count":3}' in body


def test_problem_details_omits_details_when_none() -> None:
    response = build_problem_details_response(BatchTooLarge("too many"))

    body = response.body.decode("utf-8")
    assert response.status_code == 413
    assert '"code":"BATCH_TOO_LARGE"' in body
    assert '"details"' not in body


def test_insufficient_stock_is_a_reservation_conflict() -> None:
    error = InsufficientStock("no stock", details={"qty": 3})
    assert isinstance(error, ReservationConflict)
    assert error.code == "INSUFFICIENT_STOCK"
    assert error.http_status == 409
    assert str(error) == "no stock"


def test_fastapi_exception_handler_maps_domain_error_to_problem_details() -> None:
    app = FastAPI()
    app.add_exception_handler(DomainError, domain_error_handler)

    @app.get("/boom")
    def _boom():
        raise ReservationConflict("route failed", details={"source": "test"})

    client = TestClient(app)
    response = client.get("/boom")

    assert response.status_code == 409
    assert response.headers["content-type"].startswith("application/problem+json")
    payload = response.json()
    assert payload["code"] == "RESERVATION_CONFLICT"
    assert payload["detail"] == "route failed"
    assert payload["details"] == {"source": "test"}

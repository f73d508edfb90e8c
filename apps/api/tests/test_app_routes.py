from __future__ import annotations

from fastapi.routing import APIRoute

from leadportal.jobtread.workflow import ImportOutcome
from leadportal.main import app


def _registered() -> set[tuple[str, str]]:
    return {(method, route.path) for route in app.routes if isinstance(route, APIRoute) for method in route.methods}


def test_application_registers_every_router() -> None:
    registered = _registered()
    for expected in [
        ("GET", "/health"),
        ("GET", "/metrics"),
        ("GET", "/sales-rep/info"),
        ("PUT", "/admin/sales-reps/{uid}"),
        ("GET", "/sales-rep/leads"),
        ("POST", "/sales-rep/leads/{lead_id}/touch-points"),
        ("DELETE", "/sales-rep/leads/{lead_id}/touch-points/{touch_id}"),
        ("POST", "/admin/leads"),
        ("POST", "/sales-rep/jobtread/customer"),
        ("GET", "/sales-rep/jobtread/customer/{customer_id}"),
        ("GET", "/sales-rep/jobs"),
        ("GET", "/admin/jobs"),
        ("POST", "/events"),
        ("GET", "/events/summary"),
    ]:
        assert expected in registered


def test_routes_returning_error_envelopes_skip_response_models() -> None:
    envelope_routes = [
        route
        for route in app.routes
        if isinstance(route, APIRoute) and route.path.startswith(("/sales-rep", "/admin", "/events"))
    ]
    assert envelope_routes
    assert all(route.response_model is None for route in envelope_routes)


def test_import_outcome_starts_without_steps() -> None:
    outcome = ImportOutcome(customer={"id": "acc-1"}, lead_id="L1", lead_data={}, has_contact_info=False)
    assert outcome.steps == []
    assert outcome.created_id("contact") is None

from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from app import main as app_main

DOC_PATHS = ("/docs", "/redoc", "/openapi.json")


def _client(monkeypatch, *, docs_enabled: bool) -> TestClient:
    monkeypatch.setattr(
        app_main,
        "get_settings",
        lambda: SimpleNamespace(log_level="INFO", enable_openapi_docs=docs_enabled),
    )
    return TestClient(app_main.create_app())


def test_schema_lists_billing_routes(monkeypatch) -> None:
    client = _client(monkeypatch, docs_enabled=True)

    paths = client.get("/openapi.json").json()["paths"]

    assert {
        "/webhook/payments",
        "/promo/validate",
        "/promo/apply",
        "/accounts/{account_id}/subscription",
        "/internal/billing/payment-events",
        "/internal/billing/payment-events/{event_id}/replay",
    } <= set(paths)


@pytest.mark.parametrize(("docs_enabled", "expected_status"), [(True, 200), (False, 404)])
def test_doc_pages_follow_setting(monkeypatch, docs_enabled: bool, expected_status: int) -> None:
    client = _client(monkeypatch, docs_enabled=docs_enabled)

    assert [client.get(path).status_code for path in DOC_PATHS] == [expected_status] * 3

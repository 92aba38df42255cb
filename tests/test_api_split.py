"""Tests for the HTTP function."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from api.split import app  # noqa: E402

FIXTURES = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture
def client():
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client


@pytest.mark.parametrize("path", ["/", "/api/split"])
def test_health(client, path: str) -> None:
    resp = client.get(path)
    assert resp.status_code == 200
    assert resp.get_json() == {"ok": True}
    assert resp.headers["Access-Control-Allow-Origin"] == "*"


def test_options_preflight(client) -> None:
    resp = client.options("/api/split")
    assert resp.status_code == 204
    assert "POST" in resp.headers["Access-Control-Allow-Methods"]


def test_split_sample_dump(client) -> None:
    sql = (FIXTURES / "sample-dump.sql").read_text(encoding="utf-8")
    resp = client.post("/api/split", json={"sql": sql})
    assert resp.status_code == 200
    body = resp.get_json()

    assert len(body["objects"]) == 8
    assert body["summary"]["table"] == 2
    assert "SET statement_timeout = 0;" in body["residual"]

    customers = next(o for o in body["objects"] if o["qualified_name"] == "public.customers")
    assert customers["kind"] == "table"
    assert customers["path"] == "tables/public.customers.sql"
    assert customers["constraints"] == [
        "ALTER TABLE ONLY public.customers\n    ADD CONSTRAINT customers_pkey PRIMARY KEY (id);"
    ]
    assert customers["indexes"] == [
        "CREATE UNIQUE INDEX idx_customers_email ON public.customers USING btree (email);"
    ]
    assert "CONSTRAINT customers_pkey PRIMARY KEY (id)\n);" in customers["definition"]

    schema = body["objects"][0]
    assert schema["qualified_name"] is None
    assert schema["path"] == "schemas/billing.sql"
    assert schema["sequences"] is None


def test_split_residual_only(client) -> None:
    resp = client.post("/", json={"sql": "SET statement_timeout = 0;"})
    assert resp.status_code == 200
    assert resp.get_json() == {
        "objects": [],
        "residual": "SET statement_timeout = 0;",
        "summary": {},
    }


def test_invalid_json(client) -> None:
    resp = client.post("/api/split", data="{not json", content_type="application/json")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Invalid JSON"


def test_json_object_expected(client) -> None:
    resp = client.post("/api/split", json=["CREATE SCHEMA a;"])
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "JSON object expected"


@pytest.mark.parametrize("payload", [{}, {"sql": 42}, {"sql": "   "}])
def test_missing_sql(client, payload) -> None:
    resp = client.post("/api/split", json=payload)
    assert resp.status_code == 400
    assert "sql" in resp.get_json()["error"]


@pytest.mark.parametrize(
    "method, path, kwargs",
    [
        ("options", "/", {}),
        ("post", "/api/split", {"json": {}}),
        ("post", "/", {"data": "{not json", "content_type": "application/json"}),
    ],
)
def test_cors_headers_on_every_response(client, method: str, path: str, kwargs) -> None:
    resp = getattr(client, method)(path, **kwargs)
    assert resp.headers["Access-Control-Allow-Origin"] == "*"
    assert resp.headers["Access-Control-Allow-Methods"] == "GET,POST,OPTIONS"
    assert resp.headers["Access-Control-Allow-Headers"] == "Content-Type, Authorization"

"""Tests for the HTTP API."""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from clickhouse_transfer.backend.config import get_settings
from clickhouse_transfer.backend.dependencies import get_client_factory, resolve_connection
from clickhouse_transfer.backend.main import app
from clickhouse_transfer.backend.models.transfer import ProgressEvent
from clickhouse_transfer.backend.routes.transfer_routes import _event_source
from clickhouse_transfer.backend.services.clickhouse_client import ClickHouseClient

from conftest import make_csv_stream

CONNECTION = {"host": "localhost", "port": 8123, "database": "default", "username": "default"}


@pytest.fixture
def api(fake_store, tmp_path, monkeypatch):
    """Create a test client whose store is the fake store."""
    settings = get_settings()
    monkeypatch.setattr(settings, "EXPORT_DIR", str(tmp_path))

    def factory(params):
        return ClickHouseClient(
            resolve_connection(params, settings),
            transport=httpx.MockTransport(fake_store.handler),
        )

    app.dependency_overrides[get_client_factory] = lambda: factory
    yield TestClient(app)
    app.dependency_overrides.clear()


def sse_events(response):
    frames = [f for f in response.text.split("\n\n") if f.strip()]
    return [json.loads(f[len("data: "):]) for f in frames]


def test_health_check(api):
    response = api.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_list_tables(api, fake_store):
    fake_store.tables = {"orders": [], "customers": []}
    response = api.post("/api/tables/clickhouse", json=CONNECTION)
    assert response.status_code == 200
    assert response.json() == {"tables": ["customers", "orders"]}


def test_schema_for_table(api, fake_store):
    fake_store.tables["orders"] = [("id", "UInt32"), ("note", "Nullable(String)")]
    body = {**CONNECTION, "querySpec": {"queryType": "table", "tableName": "orders"}}

    response = api.post("/api/schema/clickhouse", json=body)

    assert response.status_code == 200
    assert response.json()["columns"] == [
        {"name": "id", "type": "UInt32", "selected": True, "storeType": "UInt32"},
        {"name": "note", "type": "String", "selected": True, "storeType": "Nullable(String)"},
    ]


def test_schema_unknown_table_is_422(api):
    body = {**CONNECTION, "querySpec": {"queryType": "table", "tableName": "nope"}}
    response = api.post("/api/schema/clickhouse", json=body)
    assert response.status_code == 422
    assert "UNKNOWN_TABLE" in response.json()["error"]


def test_unreachable_store_is_502(api, fake_store):
    fake_store.unreachable = True
    response = api.post("/api/tables/clickhouse", json=CONNECTION)
    assert response.status_code == 502
    assert response.json()["error"].startswith("Unable to reach ClickHouse")


def test_preview(api, fake_store):
    fake_store.json_result = {
        "meta": [{"name": "id", "type": "UInt8"}],
        "data": [{"id": 1}, {"id": 2}],
        "rows": 2,
    }
    body = {
        **CONNECTION,
        "querySpec": {"queryType": "query", "query": "SELECT 1 AS id", "columns": ["id"]},
        "limit": 10,
    }

    response = api.post("/api/preview/clickhouse", json=body)

    assert response.status_code == 200
    assert response.json() == {"columns": ["id"], "rows": [[1], [2]]}
    assert fake_store.statements == ["SELECT id FROM (SELECT 1 AS id\n) LIMIT 10"]


def test_preview_without_columns_is_400(api):
    body = {**CONNECTION, "querySpec": {"queryType": "table", "tableName": "t", "columns": []}}
    response = api.post("/api/preview/clickhouse", json=body)
    assert response.status_code == 400


def test_compose_join_query(api):
    body = {
        "primary": {"name": "orders", "alias": "o"},
        "joins": [{"kind": "INNER", "table": "customers", "predicate": "o.cust_id = c.id"}],
        "filter": "o.total > 100",
        "orderBy": "o.total DESC",
        "limit": "50",
    }
    response = api.post("/api/query/join", json=body)
    assert response.status_code == 200
    assert response.json()["query"] == (
        "SELECT * FROM orders AS o INNER JOIN customers ON o.cust_id = c.id "
        "WHERE o.total > 100 ORDER BY o.total DESC LIMIT 50"
    )


def test_compose_join_query_incomplete(api):
    body = {
        "primary": {"name": "orders"},
        "joins": [{"kind": "LEFT", "table": "customers", "predicate": ""}],
    }
    response = api.post("/api/query/join", json=body)
    assert response.status_code == 400
    assert response.json()["error"] == "Join #1 is incomplete"


def test_export_streams_events_and_file_downloads(api, fake_store):
    fake_store.csv_body = make_csv_stream(["id", "name", "value"], 1200)
    body = {**CONNECTION, "querySpec": {"tableName": "items", "columns": ["id", "name", "value"]}}

    response = api.post("/api/export/clickhouse-to-file", json=body)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = sse_events(response)
    assert events[-1]["complete"] is True
    assert events[-1]["recordCount"] == 1200
    assert events[-1]["progress"] == 100
    assert sum(1 for e in events if e.get("complete")) == 1

    filename = events[-1]["outputLocation"].rsplit("/", 1)[-1]
    download = api.get(f"/api/export/files/{filename}")
    assert download.status_code == 200
    assert download.text.splitlines()[0] == "id,name,value"
    assert len(download.text.splitlines()) == 1201


def test_export_store_failure_is_error_event(api, fake_store):
    fake_store.fail_when("FROM items", 404, "Code: 60. UNKNOWN_TABLE")
    body = {**CONNECTION, "querySpec": {"tableName": "items", "columns": ["id"]}}

    events = sse_events(api.post("/api/export/clickhouse-to-file", json=body))

    assert events == [{"error": "Code: 60. UNKNOWN_TABLE"}]


def test_export_without_columns_is_400(api):
    body = {**CONNECTION, "querySpec": {"tableName": "items", "columns": []}}
    response = api.post("/api/export/clickhouse-to-file", json=body)
    assert response.status_code == 400


def test_download_rejects_unknown_file(api):
    response = api.get("/api/export/files/missing.csv")
    assert response.status_code == 404


def test_parse_csv(api):
    content = b"id,name,salary\n1,Alice,60000\n2,Bob,45000\n"
    response = api.post(
        "/api/parse/csv",
        files={"file": ("people.csv", content, "text/csv")},
        data={"delimiter": ",", "hasHeader": "true"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["columns"] == ["id", "name", "salary"]
    assert data["rows"] == [["1", "Alice", "60000"], ["2", "Bob", "45000"]]
    assert data["inferredTypes"] == {"id": "UInt8", "name": "String", "salary": "UInt16"}


def test_parse_empty_csv_is_400(api):
    response = api.post(
        "/api/parse/csv",
        files={"file": ("empty.csv", b"", "text/csv")},
        data={"hasHeader": "true"},
    )
    assert response.status_code == 400


PEOPLE_COLUMNS = json.dumps([
    {"name": "id", "type": "UInt8", "selected": True},
    {"name": "name", "type": "String", "selected": True},
    {"name": "salary", "type": "UInt32", "selected": True},
])


def test_import_file(api, fake_store):
    content = b"id,name,salary\n1,Alice,60000\n2,Bob,45000\n"
    response = api.post(
        "/api/import/file-to-clickhouse",
        files={"file": ("people.csv", content, "text/csv")},
        data={
            **{k: str(v) for k, v in CONNECTION.items()},
            "tableName": "people",
            "columns": PEOPLE_COLUMNS,
            "hasHeader": "true",
        },
    )
    assert response.status_code == 200
    assert response.json() == {"success": True, "recordCount": 2, "tableName": "people"}
    assert len(fake_store.statements_starting("INSERT")) == 1
    assert [row["salary"] for row in fake_store.inserted_rows()] == [60000, 45000]


def test_import_missing_column_is_400(api):
    content = b"id,name\n1,Alice\n"
    response = api.post(
        "/api/import/file-to-clickhouse",
        files={"file": ("people.csv", content, "text/csv")},
        data={"tableName": "people", "columns": PEOPLE_COLUMNS, "hasHeader": "true"},
    )
    assert response.status_code == 400
    assert "salary" in response.json()["error"]


def test_import_invalid_columns_json_is_400(api):
    response = api.post(
        "/api/import/file-to-clickhouse",
        files={"file": ("people.csv", b"id\n1\n", "text/csv")},
        data={"tableName": "people", "columns": "not json"},
    )
    assert response.status_code == 400


def test_import_stream(api, fake_store):
    content = b"id,name,salary\n1,Alice,60000\n2,Bob,45000\n"
    response = api.post(
        "/api/import/file-to-clickhouse/stream",
        files={"file": ("people.csv", content, "text/csv")},
        data={"tableName": "people", "columns": PEOPLE_COLUMNS, "hasHeader": "true"},
    )
    assert response.status_code == 200
    events = sse_events(response)
    assert events[0] == {"progress": 99}
    assert events[-1] == {
        "progress": 100,
        "complete": True,
        "recordCount": 2,
        "outputLocation": "people",
    }


@pytest.mark.asyncio
async def test_event_source_releases_resources_when_closed(client, tmp_path):
    upload_dir = tmp_path / "csv-upload-test"
    upload_dir.mkdir()
    (upload_dir / "rows.csv").write_text("id\n1\n", encoding="utf-8")
    state = {"closed": False}

    async def events():
        try:
            yield ProgressEvent(progress=10)
            yield ProgressEvent(progress=20)
        finally:
            state["closed"] = True

    frames = _event_source(events(), client, cleanup_dir=upload_dir)
    assert await frames.__anext__() == 'data: {"progress": 10}\n\n'
    await frames.aclose()

    assert state["closed"] is True
    assert client._client.is_closed
    assert not upload_dir.exists()

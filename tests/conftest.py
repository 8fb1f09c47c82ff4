import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import json

import httpx
import pytest

# Get the project root directory
project_root = Path(__file__).parent.parent

# Add the source directory to the Python path
sys.path.insert(0, str(project_root / "src"))

from clickhouse_transfer.backend.models.transfer import ConnectionParams  # noqa: E402
from clickhouse_transfer.backend.services.clickhouse_client import ClickHouseClient  # noqa: E402

# Configure pytest-asyncio
pytest_plugins = ("pytest_asyncio",)


class FakeClickHouse:
    """In-memory stand-in for the ClickHouse HTTP interface.

    Every statement is recorded. DESCRIBE, system.tables, JSON queries and
    CSVWithNames streams are answered from the attributes below.
    """

    def __init__(self):
        self.statements: List[str] = []
        self.payloads: List[str] = []
        self.requests: List[httpx.Request] = []
        self.tables: Dict[str, List[Tuple[str, str]]] = {}
        self.json_result: Dict[str, Any] = {"meta": [], "data": [], "rows": 0}
        self.csv_body: Any = b""
        self.failures: List[Tuple[str, int, str]] = []
        self.unreachable = False

    def fail_when(self, fragment: str, status_code: int, message: str) -> None:
        self.failures.append((fragment, status_code, message))

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.unreachable:
            raise httpx.ConnectError("Connection refused", request=request)

        body = request.content.decode("utf-8")
        if "query" in request.url.params:
            sql, payload = request.url.params["query"], body
        else:
            sql, payload = body, ""
        self.statements.append(sql)
        self.payloads.append(payload)
        self.requests.append(request)

        for fragment, status_code, message in self.failures:
            if fragment in sql or fragment in payload:
                return httpx.Response(status_code, text=message)

        output_format = request.url.params.get("default_format")
        if sql.startswith("DESCRIBE TABLE"):
            name = sql.split()[-1]
            if name not in self.tables:
                return httpx.Response(
                    404,
                    text=f"Code: 60. DB::Exception: Table default.{name} does not exist. (UNKNOWN_TABLE)",
                )
            data = [{"name": n, "type": t} for n, t in self.tables[name]]
            return self._json({"meta": [], "data": data, "rows": len(data)})
        if "system.tables" in sql:
            data = [{"name": name} for name in sorted(self.tables)]
            return self._json({"meta": [{"name": "name", "type": "String"}], "data": data})
        if output_format == "CSVWithNames":
            return httpx.Response(200, content=self.csv_body)
        if output_format == "JSON":
            return self._json(self.json_result)
        return httpx.Response(200, text="")

    @staticmethod
    def _json(payload: Dict[str, Any]) -> httpx.Response:
        return httpx.Response(200, content=json.dumps(payload).encode("utf-8"))

    def statements_starting(self, prefix: str) -> List[str]:
        return [s for s in self.statements if s.startswith(prefix)]

    def inserted_rows(self) -> List[Dict[str, Any]]:
        """Rows sent as JSONEachRow input to INSERT statements, in order."""
        rows = []
        for sql, payload in zip(self.statements, self.payloads):
            if sql.startswith("INSERT"):
                rows.extend(json.loads(line) for line in payload.splitlines() if line)
        return rows


def make_csv_stream(columns: List[str], row_count: int) -> bytes:
    """CSVWithNames body with one header line and ``row_count`` data lines."""
    lines = [",".join(f'"{c}"' for c in columns)]
    for i in range(1, row_count + 1):
        lines.append(f'{i},"name_{i}",{i * 10}')
    return ("\n".join(lines) + "\n").encode("utf-8")


@pytest.fixture
def fake_store():
    """Create a fake store."""
    return FakeClickHouse()


@pytest.fixture
def connection():
    return ConnectionParams(host="localhost", port=8123, database="default", username="default")


@pytest.fixture
def make_client(fake_store, connection):
    """Factory for store clients wired to the fake store."""
    def factory(params: Optional[ConnectionParams] = None) -> ClickHouseClient:
        return ClickHouseClient(
            params or connection,
            transport=httpx.MockTransport(fake_store.handler),
        )
    return factory


@pytest.fixture
def client(make_client):
    return make_client()

"""Schema discovery and row previews against the store."""

from typing import List, Optional
import logging

from ..models.transfer import (
    ColumnDescriptor,
    PreviewResult,
    QueryMode,
    QuerySpec,
    TypeTag,
)
from .clickhouse_client import ClickHouseClient
from .exceptions import QueryError, ValidationError
from .sql_generation_service import build_projection, quote_identifier, wrap_subquery

logger = logging.getLogger(__name__)


class SchemaService:
    """Resolves column metadata and previews rows through a store client."""

    def __init__(self, client: ClickHouseClient, preview_limit: int = 100):
        self.client = client
        self.preview_limit = preview_limit

    async def list_tables(self) -> List[str]:
        """List tables in the connection's database, sorted by name."""
        result = await self.client.query_json(
            "SELECT name FROM system.tables WHERE database = {database:String} ORDER BY name",
            parameters={"database": self.client.params.database},
        )
        tables = [row["name"] for row in result.get("data", [])]
        logger.info(f"Found {len(tables)} tables in {self.client.params.database}")
        return tables

    async def resolve(self, query_spec: QuerySpec) -> List[ColumnDescriptor]:
        """
        Discover the columns a table or query produces, without reading rows.

        Table mode describes the table; raw mode runs the query wrapped to
        return zero rows and reads the column metadata of the result.

        Args:
            query_spec: The table or query to inspect

        Returns:
            List[ColumnDescriptor]: One selected descriptor per column
        """
        if query_spec.mode == QueryMode.TABLE:
            if not (query_spec.table_name or "").strip():
                raise ValidationError("Table name is required")
            table = quote_identifier(query_spec.table_name, kind="table")
            result = await self.client.query_json(f"DESCRIBE TABLE {table}")
            pairs = [(row["name"], row["type"]) for row in result.get("data", [])]
        else:
            if not (query_spec.raw_query or "").strip():
                raise ValidationError("SQL query is required")
            source = wrap_subquery(query_spec.raw_query)
            result = await self.client.query_json(f"SELECT * FROM {source} LIMIT 0")
            pairs = [(col["name"], col["type"]) for col in result.get("meta", [])]

        if not pairs:
            raise QueryError("The store returned no column metadata")

        columns = [
            ColumnDescriptor(
                name=name,
                type=TypeTag.from_store_type(store_type),
                selected=True,
                store_type=store_type,
            )
            for name, store_type in pairs
        ]
        logger.info(f"Resolved {len(columns)} columns ({query_spec.mode.value} mode)")
        return columns

    async def preview(
        self,
        query_spec: QuerySpec,
        limit: Optional[int] = None
    ) -> PreviewResult:
        """Fetch the first rows of the projection, ordered by the selected columns."""
        limit = self.preview_limit if limit is None else limit
        statement = build_projection(query_spec, limit=limit)
        result = await self.client.query_json(statement)

        names = [col["name"] for col in result.get("meta", [])] or list(query_spec.columns)
        rows = [
            [record.get(column) for column in names]
            for record in result.get("data", [])
        ]
        return PreviewResult(columns=names, rows=rows)

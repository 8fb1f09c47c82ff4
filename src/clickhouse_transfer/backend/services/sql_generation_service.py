"""SQL statement construction for previews, exports, joins and imports.

Every function here is pure: it either returns statement text (plus the row
payload, for inserts) or raises ``ValidationError`` (``ParseError`` for
unusable import values) before any text is produced.
"""

from typing import Any, List, Optional, Sequence, Tuple
import json
import logging
import math
import re

from ..models.transfer import (
    ColumnDescriptor,
    JoinClause,
    QueryMode,
    QuerySpec,
    TableReference,
    TypeTag,
)
from ...utils.type_mapper import INTEGER_LITERAL, NUMERIC_LITERAL
from .exceptions import ParseError, ValidationError

logger = logging.getLogger(__name__)

IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
TABLE_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

DEFAULT_ENGINE = "MergeTree()"
DEFAULT_ORDER_BY = "tuple()"
INSERT_FORMAT = "JSONEachRow"


def _is_blank(fragment: Optional[str]) -> bool:
    return fragment is None or not str(fragment).strip()


def quote_identifier(name: str, kind: str = "column") -> str:
    """Render an identifier for interpolation into statement text.

    Plain names (letters, digits, underscores; ``db.table`` for tables) pass
    through unchanged. Anything else is backtick-quoted with backslashes and
    backticks escaped, so a name can never close the identifier early.
    """
    if name is None or not str(name).strip():
        raise ValidationError(f"Empty {kind} name", {"kind": kind})
    name = str(name).strip()
    pattern = TABLE_IDENTIFIER if kind == "table" else IDENTIFIER
    if pattern.match(name):
        return name
    escaped = name.replace("\\", "\\\\").replace("`", "\\`")
    return f"`{escaped}`"


def wrap_subquery(raw_query: str) -> str:
    """Parenthesize a raw query for use as a subquery.

    A trailing ``;`` is dropped. The closing parenthesis goes on its own line
    so a trailing ``--`` comment in the query cannot swallow it.
    """
    return f"({raw_query.strip().rstrip(';').rstrip()}\n)"


def selected_columns(columns: Sequence[ColumnDescriptor]) -> List[ColumnDescriptor]:
    """Return the selected descriptors, checking names are unique and non-empty."""
    seen = set()
    for column in columns:
        if column.name in seen:
            raise ValidationError(f"Duplicate column name '{column.name}'")
        seen.add(column.name)
    selected = [column for column in columns if column.selected]
    if not selected:
        raise ValidationError("At least one column must be selected")
    return selected


def _append_fragments(
    query: str,
    filter: Optional[str] = None,
    order_by: Optional[str] = None,
    limit: Optional[Any] = None
) -> str:
    if not _is_blank(filter):
        query += f" WHERE {str(filter).strip()}"
    if not _is_blank(order_by):
        query += f" ORDER BY {str(order_by).strip()}"
    if not _is_blank(limit):
        query += f" LIMIT {str(limit).strip()}"
    return query


def build_projection(
    query_spec: QuerySpec,
    limit: Optional[int] = None,
    columns: Optional[Sequence[ColumnDescriptor]] = None
) -> str:
    """
    Build ``SELECT <cols> FROM <source>`` for a table or a wrapped raw query.

    A raw query is wrapped as a subquery so that any query can be projected
    and limited like a table. ``limit`` overrides the query's own limit
    fragment.

    Args:
        query_spec: Source and selected columns
        limit: Optional row limit, used for previews
        columns: Optional descriptors; when given, their selected names
            replace ``query_spec.columns``

    Returns:
        str: The SELECT statement
    """
    if columns is not None:
        names = [c.name for c in selected_columns(columns)]
    else:
        names = list(query_spec.columns)
    if not names:
        raise ValidationError("At least one column must be selected")
    column_list = ", ".join(quote_identifier(c) for c in names)

    if query_spec.mode == QueryMode.TABLE:
        if _is_blank(query_spec.table_name):
            raise ValidationError("Table name is required")
        source = quote_identifier(query_spec.table_name, kind="table")
    else:
        if _is_blank(query_spec.raw_query):
            raise ValidationError("SQL query is required")
        source = wrap_subquery(query_spec.raw_query)

    if limit is not None:
        if int(limit) < 0:
            raise ValidationError(f"Invalid limit {limit}")
        row_limit: Any = int(limit)
    else:
        row_limit = query_spec.limit

    return _append_fragments(
        f"SELECT {column_list} FROM {source}",
        query_spec.filter,
        query_spec.order_by,
        row_limit,
    )


def build_join_query(
    primary: TableReference,
    joins: Sequence[JoinClause],
    filter: Optional[str] = None,
    order_by: Optional[str] = None,
    limit: Optional[Any] = None
) -> str:
    """
    Compose a raw ``SELECT *`` query from a primary table and join clauses.

    Join tables and predicates are forwarded verbatim.

    Args:
        primary: The first table, with an optional alias
        joins: Join clauses in order
        filter: Optional WHERE fragment
        order_by: Optional ORDER BY fragment
        limit: Optional LIMIT fragment

    Returns:
        str: The composed query
    """
    if primary is None or _is_blank(primary.name):
        raise ValidationError("At least one table must be specified")

    query = f"SELECT * FROM {primary.name.strip()}"
    if not _is_blank(primary.alias):
        query += f" AS {primary.alias.strip()}"

    for position, join in enumerate(joins, start=1):
        if _is_blank(join.table) or _is_blank(join.predicate):
            raise ValidationError(
                f"Join #{position} is incomplete",
                {"position": position},
            )
        query += f" {join.kind.sql} {join.table.strip()} ON {join.predicate.strip()}"

    query = _append_fragments(query, filter, order_by, limit)
    logger.debug(f"Built join query: {query}")
    return query


def build_create_table(table_name: str, columns: Sequence[ColumnDescriptor]) -> str:
    """CREATE TABLE IF NOT EXISTS for the selected columns.

    Non-string columns are Nullable so empty fields can be inserted as NULL.
    """
    table = quote_identifier(table_name, kind="table")
    definitions = []
    for column in selected_columns(columns):
        column_type = column.type.value
        if column.type != TypeTag.STRING:
            column_type = f"Nullable({column_type})"
        definitions.append(f"{quote_identifier(column.name)} {column_type}")
    return (
        f"CREATE TABLE IF NOT EXISTS {table} ({', '.join(definitions)}) "
        f"ENGINE = {DEFAULT_ENGINE} ORDER BY {DEFAULT_ORDER_BY}"
    )


def coerce_value(value: Any, type_tag: TypeTag) -> Any:
    """Convert one raw field to the JSON value sent for a column of ``type_tag``.

    Empty and absent values become ``None``. String-like types keep the raw
    text; numeric types must hold an ASCII numeric literal.
    """
    if value is None:
        return None
    text = str(value)
    if text == "":
        return None
    if type_tag.is_quoted:
        return text

    text = text.strip()
    if type_tag.is_integer:
        if not INTEGER_LITERAL.match(text):
            raise ParseError(f"Value '{value}' is not a valid {type_tag.value} value")
        return int(text)
    if not NUMERIC_LITERAL.match(text):
        raise ParseError(f"Value '{value}' is not a valid {type_tag.value} value")
    number = float(text)
    if math.isinf(number):
        raise ParseError(f"Value '{value}' is out of range for {type_tag.value}")
    return number


def build_insert(
    table_name: str,
    columns: Sequence[ColumnDescriptor],
    rows: Sequence[Sequence[Any]],
    first_row_number: int = 1
) -> Tuple[str, str]:
    """
    Build one batch INSERT and its row payload.

    Values never enter the statement text: the statement names the table and
    columns and declares ``FORMAT JSONEachRow``, and the rows travel as the
    request body, one JSON object per line.

    Args:
        table_name: Target table
        columns: Descriptors aligned with each row's values
        rows: Row values in insertion order
        first_row_number: Source row number of ``rows[0]``, used in errors

    Returns:
        Tuple[str, str]: The INSERT statement and its JSONEachRow payload
    """
    table = quote_identifier(table_name, kind="table")
    if not rows:
        raise ValidationError("Cannot build an INSERT without rows")
    names = ", ".join(quote_identifier(c.name) for c in columns)

    lines = []
    for offset, row in enumerate(rows):
        record = {}
        for column, value in zip(columns, row):
            try:
                record[column.name] = coerce_value(value, column.type)
            except ParseError as e:
                raise ParseError(
                    f"Row {first_row_number + offset}, column '{column.name}': {e.message}",
                    {"row": first_row_number + offset, "column": column.name},
                ) from e
        lines.append(json.dumps(record, ensure_ascii=False))

    statement = f"INSERT INTO {table} ({names}) FORMAT {INSERT_FORMAT}"
    return statement, "\n".join(lines) + "\n"

"""Data model shared by the transfer services and the API layer."""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union
import re
import uuid

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model accepting and emitting camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TypeTag(str, Enum):
    """Column types the engine knows how to create and render."""
    UINT8 = "UInt8"
    UINT16 = "UInt16"
    UINT32 = "UInt32"
    UINT64 = "UInt64"
    INT8 = "Int8"
    INT16 = "Int16"
    INT32 = "Int32"
    INT64 = "Int64"
    FLOAT32 = "Float32"
    FLOAT64 = "Float64"
    DATE = "Date"
    DATETIME = "DateTime"
    STRING = "String"

    @property
    def is_quoted(self) -> bool:
        return self in (TypeTag.DATE, TypeTag.DATETIME, TypeTag.STRING)

    @property
    def is_integer(self) -> bool:
        return "Int" in self.value

    @classmethod
    def from_store_type(cls, raw: str) -> "TypeTag":
        """Map a store-declared type such as ``Nullable(Int32)`` to a tag.

        Wrappers are unwrapped, parameterised date-times and decimals are
        folded into their nearest tag, and anything unknown is ``String``.
        """
        text = (raw or "").strip()
        wrapper = re.match(r"^(Nullable|LowCardinality)\((.*)\)$", text)
        while wrapper:
            text = wrapper.group(2).strip()
            wrapper = re.match(r"^(Nullable|LowCardinality)\((.*)\)$", text)

        for tag in cls:
            if text == tag.value:
                return tag
        if text.startswith("DateTime"):
            return cls.DATETIME
        if text.startswith("Date32"):
            return cls.DATE
        if text.startswith("Decimal"):
            return cls.FLOAT64
        if text == "Bool":
            return cls.UINT8
        return cls.STRING


class ColumnDescriptor(CamelModel):
    name: str
    type: TypeTag = TypeTag.STRING
    selected: bool = True
    store_type: Optional[str] = None


class TableReference(CamelModel):
    name: str
    alias: Optional[str] = None


class JoinKind(str, Enum):
    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    FULL = "FULL"

    @property
    def sql(self) -> str:
        return f"{self.value} JOIN"


class JoinClause(CamelModel):
    kind: JoinKind = JoinKind.INNER
    table: str = ""
    predicate: str = ""


class QueryMode(str, Enum):
    TABLE = "table"
    RAW = "query"


class QuerySpec(CamelModel):
    """What to select: a named table or an arbitrary query."""
    mode: QueryMode = Field(
        QueryMode.TABLE,
        validation_alias=AliasChoices("mode", "queryType"),
    )
    table_name: Optional[str] = None
    raw_query: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("raw_query", "rawQuery", "query"),
    )
    columns: List[str] = Field(default_factory=list)
    filter: str = ""
    order_by: str = ""
    limit: str = ""


class ConnectionParams(CamelModel):
    """Connection parameters for the store. Unset fields fall back to settings."""
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("password", "jwtToken"),
    )
    use_ssl: Optional[bool] = Field(
        None,
        alias="useSSL",
        validation_alias=AliasChoices("use_ssl", "useSSL"),
    )

    @property
    def base_url(self) -> str:
        scheme = "https" if self.use_ssl else "http"
        return f"{scheme}://{self.host}:{self.port}"


class TransferDirection(str, Enum):
    EXPORT = "export"
    IMPORT = "import"


class JobStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TransferJob(BaseModel):
    """State of one transfer, owned by the component driving it."""
    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    direction: TransferDirection
    records_processed: int = 0
    percent_complete: int = 0
    status: JobStatus = JobStatus.RUNNING


class ProgressEvent(CamelModel):
    progress: int


class CompleteEvent(CamelModel):
    progress: int = 100
    complete: Literal[True] = True
    record_count: int
    output_location: str


class ErrorEvent(CamelModel):
    error: str


TransferEvent = Union[ProgressEvent, CompleteEvent, ErrorEvent]


class PreviewResult(BaseModel):
    columns: List[str]
    rows: List[List[Any]]


class ExportResult(CamelModel):
    record_count: int
    output_location: str


class ImportResult(CamelModel):
    record_count: int
    table_name: str


# Request bodies for the API layer

class TablesRequest(ConnectionParams):
    pass


class SchemaRequest(ConnectionParams):
    query_spec: QuerySpec = Field(default_factory=QuerySpec)


class PreviewRequest(SchemaRequest):
    limit: Optional[int] = None


class ExportRequest(SchemaRequest):
    pass


class JoinQueryRequest(CamelModel):
    primary: TableReference
    joins: List[JoinClause] = Field(default_factory=list)
    filter: str = ""
    order_by: str = ""
    limit: str = ""


class ParsedFile(CamelModel):
    columns: List[str]
    rows: List[List[Any]]
    inferred_types: Dict[str, TypeTag] = Field(default_factory=dict)

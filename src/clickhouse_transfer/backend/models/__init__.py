from .transfer import (
    ColumnDescriptor,
    CompleteEvent,
    ConnectionParams,
    ErrorEvent,
    JoinClause,
    JoinKind,
    ProgressEvent,
    QueryMode,
    QuerySpec,
    TableReference,
    TransferJob,
    TypeTag,
)

__all__ = [
    "ColumnDescriptor",
    "CompleteEvent",
    "ConnectionParams",
    "ErrorEvent",
    "JoinClause",
    "JoinKind",
    "ProgressEvent",
    "QueryMode",
    "QuerySpec",
    "TableReference",
    "TransferJob",
    "TypeTag",
]

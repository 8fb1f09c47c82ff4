import logging
import re
from typing import Any, Iterable, List, Optional, Sequence

from ..backend.models.transfer import ColumnDescriptor, TypeTag

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 10

# ASCII digits only; the store rejects other Unicode digits in numeric columns
NUMERIC_LITERAL = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$", re.ASCII)
INTEGER_LITERAL = re.compile(r"^[+-]?\d+$", re.ASCII)
DATE_LITERAL = re.compile(r"^\d{4}-\d{2}-\d{2}$", re.ASCII)


def render_value(value: Any) -> str:
    """Canonical string form of a raw field value; ``None`` becomes empty."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def sample_values(values: Iterable[Any], sample_size: int = DEFAULT_SAMPLE_SIZE) -> List[str]:
    """Return up to ``sample_size`` non-empty values in encounter order."""
    samples: List[str] = []
    for value in values:
        if len(samples) >= sample_size:
            break
        text = render_value(value)
        if text:
            samples.append(text)
    return samples


def narrowest_unsigned(max_value: int) -> TypeTag:
    if max_value <= 255:
        return TypeTag.UINT8
    if max_value <= 65535:
        return TypeTag.UINT16
    return TypeTag.UINT32


def infer_column_type(
    values: Iterable[Any],
    sample_size: int = DEFAULT_SAMPLE_SIZE
) -> TypeTag:
    """
    Guess the storage type of a column from a sample of its values.

    Integers map to the narrowest unsigned width that holds the largest
    sampled value. Signed and 64-bit widths are never inferred, so negative
    or very large integers need a manual override.

    Args:
        values: Raw field values for one column, in file order
        sample_size: Maximum number of non-empty values to inspect

    Returns:
        TypeTag: The inferred type, ``String`` when nothing more specific fits
    """
    samples = sample_values(values, sample_size)
    if not samples:
        return TypeTag.STRING

    if all(NUMERIC_LITERAL.match(s) for s in samples):
        if all(INTEGER_LITERAL.match(s) for s in samples):
            return narrowest_unsigned(max(int(s) for s in samples))
        return TypeTag.FLOAT64

    if all(DATE_LITERAL.match(s) for s in samples):
        return TypeTag.DATE

    return TypeTag.STRING


def infer_column_types(
    columns: Sequence[str],
    rows: Sequence[Sequence[Any]],
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    overrides: Optional[dict] = None
) -> List[ColumnDescriptor]:
    """
    Build descriptors for a parsed file, one per column, all selected.

    Args:
        columns: Column names in file order
        rows: Row values aligned with ``columns``
        sample_size: Maximum number of non-empty values to inspect per column
        overrides: Optional mapping of column name to a type that replaces
            the inferred one

    Returns:
        List[ColumnDescriptor]: Descriptors in column order
    """
    overrides = overrides or {}
    descriptors = []
    for index, name in enumerate(columns):
        column_values = (row[index] if index < len(row) else None for row in rows)
        inferred = infer_column_type(column_values, sample_size)
        chosen = TypeTag(overrides.get(name, inferred))
        if chosen != inferred:
            logger.debug(f"Column {name}: inferred {inferred.value}, overridden to {chosen.value}")
        descriptors.append(ColumnDescriptor(name=name, type=chosen))
    return descriptors

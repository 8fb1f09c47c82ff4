"""Delimited flat-file parsing shared by the file preview and import paths."""

from pathlib import Path
from typing import List, Tuple, Union
import csv
import logging

import pandas as pd

from ..models.transfer import ParsedFile
from ...utils.type_mapper import infer_column_types
from .exceptions import ParseError, ValidationError

logger = logging.getLogger(__name__)


def positional_names(count: int) -> List[str]:
    """Names given to columns of a file without a header row."""
    return [f"Column{i + 1}" for i in range(count)]


def read_records(
    file_path: Union[str, Path],
    delimiter: str = ",",
    has_header: bool = True
) -> Tuple[List[str], List[List[str]]]:
    """
    Parse a whole delimited file into column names and string rows.

    Blank lines are skipped and every field is trimmed. Missing trailing
    fields read as empty strings.

    Args:
        file_path: Path of the file to read
        delimiter: Single-character field delimiter
        has_header: Whether the first row holds column names

    Returns:
        Tuple of column names and rows, rows in file order
    """
    if not delimiter or len(delimiter) != 1:
        raise ValidationError(f"Delimiter must be a single character, got {delimiter!r}")
    path = Path(file_path)
    if not path.is_file():
        raise ValidationError(f"File not found: {path}")

    try:
        df = pd.read_csv(
            path,
            sep=delimiter,
            header=0 if has_header else None,
            dtype=str,
            keep_default_na=False,
            na_filter=False,
            skip_blank_lines=True,
            skipinitialspace=True,
            quoting=csv.QUOTE_MINIMAL,
            encoding="utf-8",
        )
    except pd.errors.EmptyDataError as e:
        raise ParseError("CSV file is empty") from e
    except pd.errors.ParserError as e:
        raise ParseError(f"Malformed delimited content in {path.name}: {e}") from e
    except UnicodeDecodeError as e:
        raise ParseError(f"File {path.name} is not valid UTF-8: {e}") from e

    if has_header:
        columns = [str(c).strip() for c in df.columns]
    else:
        columns = positional_names(len(df.columns))
    df.columns = columns

    df = df.fillna("")
    df = df.apply(lambda s: s.astype(str).str.strip())
    rows = df.values.tolist()
    logger.info(f"Parsed {len(rows)} rows with {len(columns)} columns from {path.name}")
    return columns, rows


def parse_file(
    file_path: Union[str, Path],
    delimiter: str = ",",
    has_header: bool = True,
    preview_limit: int = 100,
    sample_size: int = 10
) -> ParsedFile:
    """Parse a file for preview: leading rows plus a suggested type per column."""
    columns, rows = read_records(file_path, delimiter, has_header)
    if not rows:
        raise ParseError("CSV file is empty")

    descriptors = infer_column_types(columns, rows, sample_size=sample_size)
    return ParsedFile(
        columns=columns,
        rows=rows[:preview_limit],
        inferred_types={d.name: d.type for d in descriptors},
    )

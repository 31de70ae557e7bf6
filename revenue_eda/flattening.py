"""
Nested Column Flattening
========================

Expands columns holding serialized structured payloads (JSON objects or
arrays of objects) into top-level scalar columns.

Functions:
    - decode_payload: Decode one cell of structured text
    - flatten_payload: Flatten one decoded payload into a single-level mapping
    - parse_nested_column: Flatten every cell of one nested column
    - flatten_records: Replace all nested columns of a table with their fields
    - resolve_column_names: Output name of every nested field
    - flatten_datasets: Flatten several tables with shared column names
    - flatten_dataset: flatten_datasets for a single table
"""

import ast
import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from .errors import ParseError

logger = logging.getLogger(__name__)

NESTED_COLUMNS = (
    "device",
    "geoNetwork",
    "totals",
    "trafficSource",
    "customDimensions",
    "hits",
)

# customDimensions and hits are written with Python repr quoting in the v2 export
DEFAULT_DECODERS = {
    "customDimensions": "literal",
    "hits": "literal",
}

DECODERS = ("json", "literal")
ARRAY_MODES = ("first", "index")
NAMING_RULES = ("bare", "prefixed")
ERROR_POLICIES = ("raise", "null")

_SCALAR_TYPES = (str, int, float, bool, type(None))


def _is_absent(value: Any) -> bool:
    """True for cells that carry no payload at all."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (dict, list)):
        return False
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def decode_payload(raw: str, decoder: str = "json") -> Any:
    """
    Decode a single cell of serialized structured text.

    Args:
        raw: Cell text
        decoder: 'json' for JSON text, 'literal' for Python-literal text

    Returns:
        Decoded object (dict or list for well-formed payloads)
    """
    if decoder == "json":
        return json.loads(raw)
    if decoder == "literal":
        return ast.literal_eval(raw)
    raise ValueError(f"Unknown decoder: {decoder}. Choose from: {', '.join(DECODERS)}")


def _list_to_scalar(values: list) -> Optional[str]:
    if not values:
        return None
    if all(isinstance(v, _SCALAR_TYPES) for v in values):
        return ", ".join("" if v is None else str(v) for v in values)
    return json.dumps(values, ensure_ascii=False)


def _flatten_object(
    obj: Dict[str, Any],
    prefix: str,
    delimiter: str,
    out: Dict[str, Any]
) -> None:
    for key, value in obj.items():
        path = f"{prefix}{delimiter}{key}" if prefix else str(key)
        if isinstance(value, dict):
            _flatten_object(value, path, delimiter, out)
        elif isinstance(value, list):
            out[path] = _list_to_scalar(value)
        else:
            out[path] = value


def flatten_payload(
    payload: Any,
    delimiter: str = ".",
    array_mode: str = "first",
    max_items: int = 10
) -> Dict[str, Any]:
    """
    Flatten one decoded payload into a single-level mapping.

    Nested objects become delimiter-joined key paths. Lists inside an object
    collapse to one scalar cell: scalar lists are joined with ", ", anything
    else is serialized as JSON text.

    A top-level array is reduced according to array_mode:
        - 'first': only the first element is flattened
        - 'index': up to max_items elements, each under its position

    Args:
        payload: Decoded dict or list
        delimiter: Separator between key path segments
        array_mode: How to reduce a top-level array
        max_items: Element limit for array_mode='index'

    Returns:
        Mapping of key path to scalar value (empty for empty payloads)

    Raises:
        TypeError: If the payload is neither an object nor an array
    """
    if isinstance(payload, dict):
        elements = [("", payload)]
    elif isinstance(payload, list):
        if array_mode == "first":
            elements = [("", payload[0])] if payload else []
        elif array_mode == "index":
            elements = [(str(i), element) for i, element in enumerate(payload[:max_items])]
        else:
            raise ValueError(
                f"Unknown array mode: {array_mode}. Choose from: {', '.join(ARRAY_MODES)}"
            )
    else:
        raise TypeError(f"expected an object or array, got {type(payload).__name__}")

    flat: Dict[str, Any] = {}
    for prefix, element in elements:
        if isinstance(element, dict):
            _flatten_object(element, prefix, delimiter, flat)
        else:
            key = f"{prefix}{delimiter}value" if prefix else "value"
            flat[key] = _list_to_scalar(element) if isinstance(element, list) else element

    return flat


def parse_nested_column(
    values: Iterable[Any],
    column: Optional[str] = None,
    decoder: str = "json",
    delimiter: str = ".",
    array_mode: str = "first",
    max_items: int = 10,
    errors: str = "raise",
    error_log: Optional[List[ParseError]] = None
) -> pd.DataFrame:
    """
    Flatten every cell of one nested column into a table.

    The output has exactly one row per input cell, in input order and with
    the input index. Columns are the union of key paths seen across all
    cells, in first-encounter order; keys absent from a cell are None.
    Empty or absent payloads produce an all-None row.

    Args:
        values: Cell values (Series or any iterable)
        column: Column name used in error messages
        decoder: 'json' or 'literal'
        delimiter: Separator between key path segments
        array_mode: How to reduce top-level arrays ('first' or 'index')
        max_items: Element limit for array_mode='index'
        errors: 'raise' to propagate ParseError, 'null' to substitute an empty row
        error_log: Optional list collecting substituted ParseErrors

    Returns:
        DataFrame of flattened fields (object dtype)

    Raises:
        ParseError: On malformed cell text when errors='raise'
    """
    if decoder not in DECODERS:
        raise ValueError(f"Unknown decoder: {decoder}. Choose from: {', '.join(DECODERS)}")
    if array_mode not in ARRAY_MODES:
        raise ValueError(f"Unknown array mode: {array_mode}. Choose from: {', '.join(ARRAY_MODES)}")
    if errors not in ERROR_POLICIES:
        raise ValueError(f"Unknown error policy: {errors}. Choose from: {', '.join(ERROR_POLICIES)}")

    series = values if isinstance(values, pd.Series) else pd.Series(list(values), dtype=object)
    name = column or (str(series.name) if series.name is not None else "payload")

    column_index: Dict[str, int] = {}
    rows: List[Dict[str, Any]] = []

    for position, raw in enumerate(series.tolist()):
        flat: Dict[str, Any] = {}
        if not _is_absent(raw):
            try:
                payload = decode_payload(raw, decoder) if isinstance(raw, str) else raw
                flat = flatten_payload(payload, delimiter, array_mode, max_items)
            except (ValueError, SyntaxError, TypeError, RecursionError, MemoryError) as e:
                error = ParseError(name, position, raw, str(e))
                if errors == "raise":
                    raise error from e
                logger.warning(f"{error} - substituting empty record")
                if error_log is not None:
                    error_log.append(error)
                flat = {}

        for key in flat:
            if key not in column_index:
                column_index[key] = len(column_index)
        rows.append(flat)

    columns = sorted(column_index, key=column_index.get)
    data = {key: [row.get(key) for row in rows] for key in columns}

    return pd.DataFrame(data, index=series.index, columns=columns, dtype=object)


def _qualified_name(
    source: str,
    key: str,
    naming: str,
    delimiter: str,
    taken: set
) -> str:
    prefixed = f"{source}{delimiter}{key}"
    if naming == "bare" and key not in taken:
        return key
    if prefixed in taken:
        raise ValueError(
            f"Cannot resolve column name for '{key}' from '{source}': "
            f"'{prefixed}' is already in use"
        )
    return prefixed


def resolve_column_names(
    scalar_columns: Iterable[str],
    fields: Iterable[Tuple[str, str]],
    naming: str = "bare",
    delimiter: str = "."
) -> Dict[Tuple[str, str], str]:
    """
    Decide the output name of every (nested column, key path) field.

    Fields are named in the order given, so a bare name goes to the first
    field that claims it; later fields with the same key path, and fields
    clashing with a scalar column, get their source column as prefix.

    Args:
        scalar_columns: Names already in use
        fields: (source column, key path) pairs in naming order
        naming: 'bare' or 'prefixed'
        delimiter: Separator between source column and key path

    Returns:
        Mapping of (source column, key path) to output column name
    """
    if naming not in NAMING_RULES:
        raise ValueError(f"Unknown naming rule: {naming}. Choose from: {', '.join(NAMING_RULES)}")

    taken = set(scalar_columns)
    names: Dict[Tuple[str, str], str] = {}
    for source, key in fields:
        if (source, key) in names:
            continue
        name = _qualified_name(source, key, naming, delimiter, taken)
        names[(source, key)] = name
        taken.add(name)
    return names


def _parse_table(
    df: pd.DataFrame,
    nested_columns: Sequence[str],
    decoders: Dict[str, str],
    **parse_options: Any
) -> Tuple[pd.DataFrame, Dict[str, pd.DataFrame]]:
    positional = df.reset_index(drop=True)
    scalars = positional[[c for c in positional.columns if c not in nested_columns]]

    parsed = {}
    for column in nested_columns:
        parsed[column] = parse_nested_column(
            positional[column],
            column=column,
            decoder=decoders.get(column, "json"),
            **parse_options
        )
        logger.info(f"Flattened '{column}' into {parsed[column].shape[1]} columns")
    return scalars, parsed


def _flatten_tables(
    tables: Sequence[pd.DataFrame],
    nested_per_table: Sequence[List[str]],
    decoders: Optional[Dict[str, str]],
    naming: str,
    delimiter: str,
    **parse_options: Any
) -> List[pd.DataFrame]:
    if naming not in NAMING_RULES:
        raise ValueError(f"Unknown naming rule: {naming}. Choose from: {', '.join(NAMING_RULES)}")

    decoders = decoders or {}
    parsed_tables = [
        _parse_table(df, nested, decoders, delimiter=delimiter, **parse_options)
        for df, nested in zip(tables, nested_per_table)
    ]

    # names are fixed over the union of all tables so shared fields match
    scalar_columns = [c for scalars, _ in parsed_tables for c in scalars.columns]
    sources = list(dict.fromkeys(c for nested in nested_per_table for c in nested))
    fields = [
        (source, key)
        for source in sources
        for _, parsed in parsed_tables
        if source in parsed
        for key in parsed[source].columns
    ]
    names = resolve_column_names(scalar_columns, fields, naming, delimiter)

    flattened = []
    for df, (scalars, parsed) in zip(tables, parsed_tables):
        parts = [scalars]
        for source, frame in parsed.items():
            parts.append(frame.rename(columns={key: names[(source, key)] for key in frame.columns}))
        flat = pd.concat(parts, axis=1)
        flat.index = df.index
        flattened.append(flat)
    return flattened


def flatten_records(
    df: pd.DataFrame,
    nested_columns: Sequence[str] = NESTED_COLUMNS,
    decoders: Optional[Dict[str, str]] = None,
    naming: str = "bare",
    delimiter: str = ".",
    array_mode: str = "first",
    max_items: int = 10,
    errors: str = "raise",
    error_log: Optional[List[ParseError]] = None
) -> pd.DataFrame:
    """
    Replace every nested column of a table with its flattened fields.

    Scalar columns come first in their input order, followed by the fields
    of each nested column in the order the nested columns are given. Rows
    are aligned by position and never dropped or reordered.

    Naming rules:
        - 'bare': a field keeps its key path unless the name is already
          taken by a scalar column or an earlier nested column, in which
          case it becomes '<source><delimiter><key path>' (first seen wins)
        - 'prefixed': every field is '<source><delimiter><key path>'

    Tables that must share a schema (train and test) should be flattened
    together with flatten_datasets so collisions are resolved once.

    Args:
        df: Raw table
        nested_columns: Columns holding structured payloads
        decoders: Per-column decoder overrides (default 'json')
        naming: 'bare' or 'prefixed'
        delimiter: Separator between key path segments
        array_mode: How to reduce top-level arrays
        max_items: Element limit for array_mode='index'
        errors: 'raise' or 'null' (see parse_nested_column)
        error_log: Optional list collecting substituted ParseErrors

    Returns:
        Flattened DataFrame with the same index as df

    Raises:
        KeyError: If a nested column is not in the table
    """
    nested_columns = list(dict.fromkeys(nested_columns))
    missing = [c for c in nested_columns if c not in df.columns]
    if missing:
        raise KeyError(f"Nested columns not found in table: {missing}")

    return _flatten_tables(
        [df], [nested_columns], decoders, naming, delimiter,
        array_mode=array_mode, max_items=max_items, errors=errors, error_log=error_log
    )[0]


def flatten_datasets(
    tables: Sequence[pd.DataFrame],
    nested_columns: Sequence[str] = NESTED_COLUMNS,
    decoders: Optional[Dict[str, str]] = None,
    naming: str = "bare",
    delimiter: str = ".",
    array_mode: str = "first",
    max_items: int = 10,
    errors: str = "raise",
    error_log: Optional[List[ParseError]] = None
) -> List[pd.DataFrame]:
    """
    Flatten several tables with one shared naming decision.

    Column names are resolved over the union of the fields found in all
    tables, so a key path maps to the same column name in every table even
    when it only occurs in some of them. Declared nested columns missing
    from a table are logged and skipped for that table; older exports lack
    customDimensions and hits.

    Args:
        tables: Raw tables (e.g. [train, test])
        nested_columns: Declared nested columns
        decoders: Per-column decoder overrides (defaults to DEFAULT_DECODERS)
        naming: 'bare' or 'prefixed'
        delimiter: Separator between key path segments
        array_mode: How to reduce top-level arrays
        max_items: Element limit for array_mode='index'
        errors: 'raise' or 'null' (see parse_nested_column)
        error_log: Optional list collecting substituted ParseErrors

    Returns:
        One flattened DataFrame per input table, in input order
    """
    nested_columns = list(dict.fromkeys(nested_columns))
    if decoders is None:
        decoders = DEFAULT_DECODERS

    nested_per_table = []
    for df in tables:
        absent = [c for c in nested_columns if c not in df.columns]
        if absent:
            logger.info(f"Nested columns not present, skipping: {absent}")
        nested_per_table.append([c for c in nested_columns if c in df.columns])
        logger.info(f"Flattening {len(nested_per_table[-1])} nested columns over {len(df)} rows")

    flattened = _flatten_tables(
        tables, nested_per_table, decoders, naming, delimiter,
        array_mode=array_mode, max_items=max_items, errors=errors, error_log=error_log
    )
    for flat in flattened:
        logger.info(f"Flattened table: {flat.shape[0]} rows × {flat.shape[1]} columns")

    return flattened


def flatten_dataset(
    df: pd.DataFrame,
    nested_columns: Sequence[str] = NESTED_COLUMNS,
    decoders: Optional[Dict[str, str]] = None,
    **options: Any
) -> pd.DataFrame:
    """flatten_datasets for a single table."""
    return flatten_datasets([df], nested_columns, decoders, **options)[0]

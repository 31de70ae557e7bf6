"""
Schema Reconciliation
=====================

Aligns the column sets of independently flattened train and test tables and
prunes columns that carry no information.

Functions:
    - schema_diff: Columns exclusive to each of two tables
    - find_constant_columns: Columns with exactly one distinct non-missing value
    - find_empty_columns: Columns with no non-missing values
    - reconcile_schemas: Drop orphan and uninformative columns from both tables
    - prepare_datasets: Flatten, normalize and reconcile raw train/test tables
"""

import logging
import warnings
from typing import Dict, Any, Iterable, List, Tuple

import pandas as pd

from .cleaning import SENTINEL_TOKENS, count_sentinels, normalize_missing
from .errors import ParseError, SchemaMismatchWarning
from .flattening import DEFAULT_DECODERS, NESTED_COLUMNS, flatten_datasets

logger = logging.getLogger(__name__)

ALLOWED_TRAIN_ONLY = ("transactionRevenue",)


def schema_diff(left: pd.DataFrame, right: pd.DataFrame) -> Tuple[List[str], List[str]]:
    """
    Compute the symmetric column difference of two tables.

    Args:
        left: First table
        right: Second table

    Returns:
        Tuple of (only_in_left, only_in_right), each in its table's column order
    """
    right_cols = set(right.columns)
    left_cols = set(left.columns)
    only_left = [c for c in left.columns if c not in right_cols]
    only_right = [c for c in right.columns if c not in left_cols]
    return only_left, only_right


def find_constant_columns(df: pd.DataFrame) -> List[str]:
    """Columns whose count of distinct non-missing values is exactly one."""
    return [c for c in df.columns if df[c].nunique(dropna=True) == 1]


def find_empty_columns(df: pd.DataFrame) -> List[str]:
    """Columns without a single non-missing value."""
    return [c for c in df.columns if df[c].notna().sum() == 0]


def reconcile_schemas(
    train: pd.DataFrame,
    test: pd.DataFrame,
    allowed_train_only: Iterable[str] = ALLOWED_TRAIN_ONLY,
    drop_constant: bool = True,
    stacklevel: int = 2
) -> Dict[str, Any]:
    """
    Align the train and test column sets.

    Train-only columns must be in allowed_train_only (target or derived
    fields); any other orphan column, on either side, is reported with a
    SchemaMismatchWarning and dropped. Constant and empty columns are
    detected on the training table and dropped from both. Allowed
    train-only columns are never pruned.

    Args:
        train: Flattened, normalized training table
        test: Flattened, normalized test table
        allowed_train_only: Columns permitted to exist only in train
        drop_constant: Whether to prune constant and empty columns
        stacklevel: Passed to warnings.warn; wrappers add one per level

    Returns:
        Dictionary containing:
            - train, test: Reconciled tables (test in train's column order)
            - train_only, test_only: Raw schema difference
            - unexpected_train_only: Train-only columns that were dropped
            - constant_columns, empty_columns: Pruned uninformative columns
            - dropped_columns: Every column removed from train
    """
    allowed = list(dict.fromkeys(allowed_train_only))
    train_only, test_only = schema_diff(train, test)

    unexpected_train_only = [c for c in train_only if c not in allowed]
    for col in unexpected_train_only:
        warnings.warn(
            f"Column '{col}' exists only in the training table and is not an "
            f"allowed train-only column; dropping it",
            SchemaMismatchWarning,
            stacklevel=stacklevel,
        )
    for col in test_only:
        warnings.warn(
            f"Column '{col}' exists only in the test table; dropping it",
            SchemaMismatchWarning,
            stacklevel=stacklevel,
        )

    train = train.drop(columns=unexpected_train_only)
    test = test.drop(columns=test_only)

    constant_columns: List[str] = []
    empty_columns: List[str] = []
    if drop_constant:
        constant_columns = [c for c in find_constant_columns(train) if c not in allowed]
        empty_columns = [c for c in find_empty_columns(train) if c not in allowed]
        pruned = constant_columns + empty_columns
        train = train.drop(columns=pruned)
        test = test.drop(columns=[c for c in pruned if c in test.columns])

    test = test[[c for c in train.columns if c in test.columns]]

    logger.info(f"Train-only columns: {train_only}")
    logger.info(f"Test-only columns: {test_only}")
    logger.info(f"Dropped {len(constant_columns)} constant and {len(empty_columns)} empty columns")
    logger.info(f"Reconciled schema: {train.shape[1]} train / {test.shape[1]} test columns")

    return {
        'train': train,
        'test': test,
        'train_only': train_only,
        'test_only': test_only,
        'unexpected_train_only': unexpected_train_only,
        'constant_columns': constant_columns,
        'empty_columns': empty_columns,
        'dropped_columns': unexpected_train_only + constant_columns + empty_columns
    }


def prepare_datasets(
    train_raw: pd.DataFrame,
    test_raw: pd.DataFrame,
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Flatten, normalize and reconcile the raw train and test tables.

    Both tables are flattened together, so a field gets the same column
    name in each even when it only occurs in one of them.

    Args:
        train_raw: Raw training table
        test_raw: Raw test table
        config: Configuration dictionary

    Returns:
        Dictionary containing the reconcile_schemas result plus:
            - parse_errors: ParseErrors substituted with empty records
            - sentinel_counts: Sentinel cells per column in the training table
    """
    logger.info("=" * 60)
    logger.info("STARTING FLATTENING AND RECONCILIATION")
    logger.info("=" * 60)

    flatten_config = config.get('flatten', {})
    schema_config = config.get('schema', {})

    options = {
        'decoders': flatten_config.get('decoders', DEFAULT_DECODERS),
        'naming': flatten_config.get('naming', 'bare'),
        'delimiter': flatten_config.get('delimiter', '.'),
        'array_mode': flatten_config.get('array_mode', 'first'),
        'max_items': flatten_config.get('max_items', 10),
        'errors': flatten_config.get('on_parse_error', 'raise')
    }
    nested_columns = flatten_config.get('nested_columns', list(NESTED_COLUMNS))
    tokens = schema_config.get('sentinel_tokens', list(SENTINEL_TOKENS))

    parse_errors: List[ParseError] = []

    logger.info("Flattening training and test tables...")
    train_flat, test_flat = flatten_datasets(
        [train_raw, test_raw], nested_columns, error_log=parse_errors, **options
    )

    if parse_errors:
        logger.warning(f"{len(parse_errors)} cells could not be parsed and were left empty")

    sentinel_counts = count_sentinels(train_flat, tokens)
    train_flat = normalize_missing(train_flat, tokens)
    test_flat = normalize_missing(test_flat, tokens)

    result = reconcile_schemas(
        train_flat,
        test_flat,
        allowed_train_only=schema_config.get('allowed_train_only', list(ALLOWED_TRAIN_ONLY)),
        drop_constant=schema_config.get('drop_constant', True),
        stacklevel=3
    )
    result['parse_errors'] = parse_errors
    result['sentinel_counts'] = sentinel_counts

    logger.info("=" * 60)
    logger.info("FLATTENING COMPLETE")
    logger.info(f"  Train: {result['train'].shape[0]} rows × {result['train'].shape[1]} columns")
    logger.info(f"  Test: {result['test'].shape[0]} rows × {result['test'].shape[1]} columns")
    logger.info("=" * 60)

    return result


def print_schema_summary(result: Dict[str, Any]) -> None:
    """
    Print a summary of the reconciliation results.

    Args:
        result: Dictionary from prepare_datasets or reconcile_schemas
    """
    print("\n" + "=" * 50)
    print("SCHEMA SUMMARY")
    print("=" * 50)
    print(f"Train shape: {result['train'].shape[0]} rows × {result['train'].shape[1]} columns")
    print(f"Test shape: {result['test'].shape[0]} rows × {result['test'].shape[1]} columns")
    print(f"\nTrain-only columns: {result['train_only'] or 'none'}")
    print(f"Test-only columns: {result['test_only'] or 'none'}")
    print(f"Constant columns dropped ({len(result['constant_columns'])}):")
    for col in result['constant_columns']:
        print(f"  - {col}")
    print(f"Empty columns dropped: {len(result['empty_columns'])}")
    if result.get('parse_errors'):
        print(f"Unparseable cells left empty: {len(result['parse_errors'])}")
    print("=" * 50 + "\n")

"""
Data Loader Module
==================

Handles CSV ingestion, validation, and basic data quality checks.

Functions:
    - load_config: Load YAML configuration file
    - load_raw_data: Load a raw session export with nested columns kept as text
    - load_lookup_table: Load the visitor id -> default prediction table
    - validate_raw_data: Check data quality constraints
    - print_data_summary: Console summary of a table
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional, Sequence, Tuple

import pandas as pd
import yaml

logger = logging.getLogger(__name__)


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def load_raw_data(
    file_path: str,
    id_columns: Sequence[str] = ("fullVisitorId", "sessionId", "visitId"),
    nested_columns: Sequence[str] = (),
    nrows: Optional[int] = None
) -> pd.DataFrame:
    """
    Load a raw session export.

    Identifier and nested columns are read as strings: visitor ids carry
    leading zeros and nested cells must reach the parser untouched.

    Args:
        file_path: Path to the CSV file
        id_columns: Identifier columns to keep as text
        nested_columns: Columns holding serialized payloads
        nrows: Read only the first n rows (optional)

    Returns:
        DataFrame containing the raw sessions

    Raises:
        FileNotFoundError: If data file doesn't exist
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    dtype = {col: str for col in list(id_columns) + list(nested_columns)}
    df = pd.read_csv(file_path, dtype=dtype, nrows=nrows, low_memory=False)
    logger.info(f"Loaded data from {file_path}: {df.shape[0]} rows × {df.shape[1]} columns")

    return df


def load_lookup_table(
    file_path: str,
    id_column: str = "fullVisitorId",
    value_column: str = "PredictedLogRevenue"
) -> pd.DataFrame:
    """
    Load the visitor id -> default prediction table (sample submission).

    Args:
        file_path: Path to the CSV file
        id_column: Visitor identifier column
        value_column: Default prediction column

    Returns:
        DataFrame with id_column and value_column

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If a required column is missing
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Lookup table not found: {file_path}")

    df = pd.read_csv(file_path, dtype={id_column: str})

    missing = [c for c in (id_column, value_column) if c not in df.columns]
    if missing:
        raise ValueError(
            f"Lookup table is missing columns {missing}. Columns: {list(df.columns)}"
        )

    logger.info(f"Loaded lookup table from {file_path}: {len(df)} visitors")
    return df[[id_column, value_column]]


def validate_raw_data(
    df: pd.DataFrame,
    nested_columns: Sequence[str],
    id_column: str = "fullVisitorId",
    strict: bool = True
) -> Tuple[bool, Dict[str, Any]]:
    """
    Validate data quality constraints for a raw session export.

    Checks:
        - Nested columns are present
        - Visitor identifier is present and never empty
        - No duplicate rows

    Args:
        df: DataFrame to validate
        nested_columns: Expected nested columns
        id_column: Visitor identifier column
        strict: If True, raise errors on validation failure

    Returns:
        Tuple of (is_valid, validation_report)
    """
    report = {
        "total_rows": len(df),
        "total_columns": len(df.columns),
        "column_names": list(df.columns),
        "issues": []
    }

    # Check 1: Nested columns
    missing_nested = [c for c in nested_columns if c not in df.columns]
    if missing_nested:
        issue = f"Nested columns not found: {missing_nested}"
        report["issues"].append(issue)
        report["missing_nested_columns"] = missing_nested
        logger.warning(issue)

    # Check 2: Identifier
    if id_column not in df.columns:
        issue = f"Identifier column '{id_column}' not found"
        report["issues"].append(issue)
        logger.warning(issue)
    else:
        missing_ids = int(df[id_column].isnull().sum())
        if missing_ids > 0:
            issue = f"Missing visitor ids: {missing_ids}"
            report["issues"].append(issue)
            logger.warning(issue)

    # Check 3: Duplicate rows
    duplicates = int(df.duplicated().sum())
    if duplicates > 0:
        issue = f"Duplicate rows found: {duplicates}"
        report["issues"].append(issue)
        logger.warning(issue)

    is_valid = len(report["issues"]) == 0
    report["is_valid"] = is_valid

    if strict and not is_valid:
        raise ValueError(f"Data validation failed: {report['issues']}")

    return is_valid, report


def print_data_summary(df: pd.DataFrame, title: str = "DATASET SUMMARY") -> None:
    """
    Print a formatted summary of the dataset to console.

    Args:
        df: DataFrame to summarize
        title: Heading for the summary
    """
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)
    print(f"Shape: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"Memory Usage: {df.memory_usage(deep=True).sum() / 1024:.2f} KB")
    print("\nColumn Information:")
    print("-" * 40)

    for col in df.columns:
        dtype = df[col].dtype
        non_null = df[col].count()
        null_pct = (1 - non_null / len(df)) * 100 if len(df) else 0.0
        print(f"  {col}: {dtype} | {non_null} non-null ({null_pct:.1f}% missing)")

    print("=" * 60 + "\n")

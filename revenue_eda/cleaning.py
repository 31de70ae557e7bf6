"""
Missing-Value Normalization
===========================

The analytics export fills unknown fields with placeholder strings rather than
leaving them empty. These are mapped to NaN before any statistics are computed.

Functions:
    - normalize_missing: Replace sentinel tokens with NaN
    - count_sentinels: Count sentinel cells per column
"""

import logging
from typing import Dict, Iterable

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

SENTINEL_TOKENS = (
    "not available in demo dataset",
    "(not set)",
    "(none)",
    "(not provided)",
    "unknown.unknown",
    "<NA>",
    "null",
)


def _sentinel_mask(series: pd.Series, tokens: Iterable[str]) -> pd.Series:
    return series.isin(list(tokens))


def count_sentinels(
    df: pd.DataFrame,
    tokens: Iterable[str] = SENTINEL_TOKENS
) -> Dict[str, int]:
    """
    Count cells exactly matching a sentinel token, per column.

    Args:
        df: Flattened table
        tokens: Sentinel tokens

    Returns:
        Mapping of column name to count (columns without matches omitted)
    """
    tokens = list(tokens)
    counts = {}
    for col in df.columns:
        n = int(_sentinel_mask(df[col], tokens).sum())
        if n > 0:
            counts[col] = n
    return counts


def normalize_missing(
    df: pd.DataFrame,
    tokens: Iterable[str] = SENTINEL_TOKENS
) -> pd.DataFrame:
    """
    Replace every cell exactly equal to a sentinel token with NaN.

    Matching is exact and case-sensitive: 'none' is a real value, '(none)'
    is not. Columns without any match are left untouched, so numeric columns
    keep their dtype. Applying the function twice gives the same table.

    Args:
        df: Flattened table
        tokens: Sentinel tokens

    Returns:
        New DataFrame with sentinels replaced
    """
    tokens = list(tokens)
    result = df.copy()
    total = 0

    for col in result.columns:
        mask = _sentinel_mask(result[col], tokens)
        n = int(mask.sum())
        if n == 0:
            continue
        result[col] = result[col].mask(mask, np.nan)
        total += n
        logger.debug(f"Column '{col}': {n} sentinel values normalized")

    logger.info(f"Normalized {total} sentinel values across {result.shape[1]} columns")
    return result

"""
Feature Preparation Module
==========================

Turns the reconciled session tables into numeric model inputs.

Every column is first classified from the configuration into a typed
manifest; encoding then dispatches on the declared kind rather than on the
column's runtime dtype.

Functions:
    - build_column_manifest: Classify columns into ColumnKind values
    - log_revenue: Log-transformed revenue target
    - split_by_visitor: Seeded train/validation split that keeps visitors intact
    - prepare_features: Complete feature preparation for train and test
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Dict, Any, Iterable, List, Optional, Tuple

import joblib
import numpy as np
import pandas as pd
from sklearn.model_selection import GroupShuffleSplit

logger = logging.getLogger(__name__)


class ColumnKind(Enum):
    IDENTIFIER = "identifier"
    TARGET = "target"
    NUMERIC = "numeric"
    DATE = "date"
    TIMESTAMP = "timestamp"
    CATEGORICAL = "categorical"
    DROP = "drop"


MISSING_CODE = -1


def build_column_manifest(
    columns: Iterable[str],
    features_config: Dict[str, Any]
) -> Dict[str, ColumnKind]:
    """
    Classify columns from the declared lists in the feature configuration.

    Columns not declared anywhere are categorical. Declared columns that are
    not in the table are ignored.

    Args:
        columns: Column names of the reconciled table
        features_config: The 'features' configuration section

    Returns:
        Ordered mapping of column name to ColumnKind
    """
    declared: Dict[str, ColumnKind] = {}
    for key, kind in (
        ('drop_columns', ColumnKind.DROP),
        ('identifier_columns', ColumnKind.IDENTIFIER),
        ('numeric_columns', ColumnKind.NUMERIC),
        ('date_columns', ColumnKind.DATE),
        ('timestamp_columns', ColumnKind.TIMESTAMP),
    ):
        for col in features_config.get(key, []):
            declared.setdefault(col, kind)

    target = features_config.get('target', 'transactionRevenue')
    declared[target] = ColumnKind.TARGET

    return {col: declared.get(col, ColumnKind.CATEGORICAL) for col in columns}


def log_revenue(values: pd.Series) -> pd.Series:
    """log1p of revenue, with missing revenue counted as zero."""
    revenue = pd.to_numeric(values, errors='coerce').fillna(0).clip(lower=0)
    return np.log1p(revenue.astype(float))


def _as_text(series: pd.Series) -> pd.Series:
    return series.astype(str).where(series.notna())


class RevenuePreprocessor:
    """
    Encodes reconciled session tables into numeric features.

    Categorical levels are learned once and shared by every table
    transformed afterwards, so train and test get identical codes.
    """

    def __init__(
        self,
        manifest: Dict[str, ColumnKind],
        min_category_count: int = 20,
        date_format: str = "%Y%m%d"
    ):
        """
        Initialize the preprocessor.

        Args:
            manifest: Column name -> ColumnKind
            min_category_count: Levels seen fewer times are lumped together
            date_format: strptime format of DATE columns
        """
        self.manifest = dict(manifest)
        self.min_category_count = min_category_count
        self.date_format = date_format

        self.categories_: Optional[Dict[str, List[str]]] = None
        self.feature_columns: Optional[List[str]] = None
        self._is_fitted = False

    def columns_of(self, kind: ColumnKind) -> List[str]:
        """Columns declared with the given kind, in manifest order."""
        return [col for col, k in self.manifest.items() if k is kind]

    def fit(self, df: pd.DataFrame) -> 'RevenuePreprocessor':
        """
        Learn categorical levels and the output feature layout.

        Args:
            df: Table covering every row that will be transformed (train + test)

        Returns:
            Self for method chaining
        """
        self.categories_ = {}
        for col in self.columns_of(ColumnKind.CATEGORICAL):
            counts = _as_text(df[col]).value_counts()
            counts = counts.sort_index().sort_values(ascending=False, kind='mergesort')
            levels = counts[counts >= self.min_category_count].index.tolist()
            self.categories_[col] = levels
            logger.debug(f"Column '{col}': kept {len(levels)} of {len(counts)} levels")

        feature_columns = []
        for col, kind in self.manifest.items():
            if kind is ColumnKind.NUMERIC or kind is ColumnKind.CATEGORICAL:
                feature_columns.append(col)
            elif kind is ColumnKind.DATE:
                feature_columns.extend(f"{col}_{part}" for part in ('year', 'month', 'day', 'weekday'))
            elif kind is ColumnKind.TIMESTAMP:
                feature_columns.append(f"{col}_hour")
        self.feature_columns = feature_columns

        logger.info(
            f"Fitted preprocessor: {len(self.categories_)} categorical, "
            f"{len(self.columns_of(ColumnKind.NUMERIC))} numeric, "
            f"{len(feature_columns)} output features"
        )

        self._is_fitted = True
        return self

    def _encode_numeric(self, series: pd.Series) -> pd.Series:
        return pd.to_numeric(series, errors='coerce').astype(float)

    def _encode_categorical(self, col: str, series: pd.Series) -> pd.Series:
        levels = self.categories_[col]
        mapping = {level: i for i, level in enumerate(levels)}
        text = _as_text(series)
        codes = text.map(mapping)
        codes[text.notna() & codes.isna()] = len(levels)
        return codes.fillna(MISSING_CODE).astype(int)

    def _encode_date(self, col: str, series: pd.Series) -> Dict[str, pd.Series]:
        text = pd.to_numeric(series, errors='coerce').astype('Int64').astype(str)
        dates = pd.to_datetime(text, format=self.date_format, errors='coerce')
        return {
            f"{col}_year": dates.dt.year.astype(float),
            f"{col}_month": dates.dt.month.astype(float),
            f"{col}_day": dates.dt.day.astype(float),
            f"{col}_weekday": dates.dt.weekday.astype(float),
        }

    def _encode_timestamp(self, col: str, series: pd.Series) -> Dict[str, pd.Series]:
        stamps = pd.to_datetime(pd.to_numeric(series, errors='coerce'), unit='s', errors='coerce')
        return {f"{col}_hour": stamps.dt.hour.astype(float)}

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Encode a table using the fitted layout.

        Args:
            df: Reconciled table (the target column may be absent)

        Returns:
            Numeric feature DataFrame with the same index as df
        """
        if not self._is_fitted:
            raise ValueError("Preprocessor must be fitted before transform. Call fit() first.")

        encoded: Dict[str, pd.Series] = {}
        for col, kind in self.manifest.items():
            if kind is ColumnKind.NUMERIC:
                encoded[col] = self._encode_numeric(df[col])
            elif kind is ColumnKind.CATEGORICAL:
                encoded[col] = self._encode_categorical(col, df[col])
            elif kind is ColumnKind.DATE:
                encoded.update(self._encode_date(col, df[col]))
            elif kind is ColumnKind.TIMESTAMP:
                encoded.update(self._encode_timestamp(col, df[col]))

        features = pd.DataFrame(encoded, index=df.index)
        return features[self.feature_columns]

    def fit_transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Fit the preprocessor and encode the same table.

        Args:
            df: Reconciled table

        Returns:
            Numeric feature DataFrame
        """
        self.fit(df)
        return self.transform(df)

    def save(self, filepath: str) -> None:
        """
        Save the preprocessor state to disk.

        Args:
            filepath: Path to save the preprocessor
        """
        state = {
            'manifest': {col: kind.value for col, kind in self.manifest.items()},
            'min_category_count': self.min_category_count,
            'date_format': self.date_format,
            'categories_': self.categories_,
            'feature_columns': self.feature_columns,
            '_is_fitted': self._is_fitted
        }
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(state, filepath)
        logger.info(f"Preprocessor saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'RevenuePreprocessor':
        """
        Load a preprocessor from disk.

        Args:
            filepath: Path to the saved preprocessor

        Returns:
            Loaded RevenuePreprocessor instance
        """
        state = joblib.load(filepath)

        preprocessor = cls(
            manifest={col: ColumnKind(kind) for col, kind in state['manifest'].items()},
            min_category_count=state['min_category_count'],
            date_format=state['date_format']
        )
        preprocessor.categories_ = state['categories_']
        preprocessor.feature_columns = state['feature_columns']
        preprocessor._is_fitted = state['_is_fitted']

        logger.info(f"Preprocessor loaded from {filepath}")
        return preprocessor


def split_by_visitor(
    groups: pd.Series,
    test_size: float = 0.2,
    seed: int = 42
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Split rows into train/validation positions with no visitor on both sides.

    Args:
        groups: Visitor id per row
        test_size: Fraction of visitors held out
        seed: Random seed for the split

    Returns:
        Tuple of (train_positions, validation_positions)
    """
    splitter = GroupShuffleSplit(n_splits=1, test_size=test_size, random_state=seed)
    train_idx, valid_idx = next(splitter.split(np.zeros(len(groups)), groups=groups.values))

    logger.info(
        f"Train/Validation split: {len(train_idx)} train rows, {len(valid_idx)} validation rows"
    )
    return train_idx, valid_idx


def prepare_features(
    train: pd.DataFrame,
    test: pd.DataFrame,
    config: Dict[str, Any],
    save_preprocessor: Optional[str] = None
) -> Dict[str, Any]:
    """
    Complete feature preparation for reconciled train and test tables.

    Args:
        train: Reconciled training table (with target)
        test: Reconciled test table
        config: Configuration dictionary
        save_preprocessor: Path to save the fitted preprocessor

    Returns:
        Dictionary containing:
            - X, y: Training features and log-revenue target
            - X_test: Test features
            - train_ids, test_ids: Visitor id per row
            - train_idx, valid_idx: Validation split positions
            - preprocessor: Fitted RevenuePreprocessor
            - manifest: Column manifest
            - feature_names: Output feature names
    """
    logger.info("=" * 60)
    logger.info("STARTING FEATURE PREPARATION")
    logger.info("=" * 60)

    features_config = config.get('features', {})
    seed = config.get('seed', 42)
    target = features_config.get('target', 'transactionRevenue')
    id_column = features_config.get('id_column', 'fullVisitorId')

    if target not in train.columns:
        raise KeyError(f"Target column '{target}' not found in training table")

    manifest = build_column_manifest(train.columns, features_config)
    for kind in ColumnKind:
        cols = [c for c, k in manifest.items() if k is kind]
        logger.info(f"  {kind.value}: {len(cols)} columns")

    preprocessor = RevenuePreprocessor(
        manifest,
        min_category_count=features_config.get('min_category_count', 20),
        date_format=features_config.get('date_format', '%Y%m%d')
    )
    preprocessor.fit(pd.concat([train, test], ignore_index=True))

    X = preprocessor.transform(train)
    X_test = preprocessor.transform(test)
    y = log_revenue(train[target])

    train_idx, valid_idx = split_by_visitor(
        train[id_column],
        test_size=features_config.get('validation_size', 0.2),
        seed=seed
    )

    if save_preprocessor:
        preprocessor.save(save_preprocessor)

    result = {
        'X': X,
        'y': y,
        'X_test': X_test,
        'train_ids': train[id_column],
        'test_ids': test[id_column],
        'train_idx': train_idx,
        'valid_idx': valid_idx,
        'preprocessor': preprocessor,
        'manifest': manifest,
        'feature_names': preprocessor.feature_columns
    }

    logger.info("=" * 60)
    logger.info("FEATURE PREPARATION COMPLETE")
    logger.info(f"  Training rows: {len(X)}")
    logger.info(f"  Test rows: {len(X_test)}")
    logger.info(f"  Features: {X.shape[1]}")
    logger.info(f"  Sessions with revenue: {int((y > 0).sum())}")
    logger.info("=" * 60)

    return result


def print_preprocessing_summary(result: Dict[str, Any]) -> None:
    """
    Print a summary of the feature preparation results.

    Args:
        result: Dictionary from prepare_features
    """
    print("\n" + "=" * 50)
    print("FEATURE SUMMARY")
    print("=" * 50)
    print(f"Training rows: {result['X'].shape[0]}")
    print(f"  - fit: {len(result['train_idx'])}")
    print(f"  - validation: {len(result['valid_idx'])}")
    print(f"Test rows: {result['X_test'].shape[0]}")
    print(f"Features: {result['X'].shape[1]}")
    print(f"Paying sessions: {int((result['y'] > 0).sum())} ({(result['y'] > 0).mean() * 100:.2f}%)")
    print("\nColumn manifest:")
    for kind in ColumnKind:
        cols = [c for c, k in result['manifest'].items() if k is kind]
        if cols:
            print(f"  {kind.value:<12} {len(cols)}")
    print("=" * 50 + "\n")

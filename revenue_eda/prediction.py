"""
Prediction Module
=================

Turns per-session predictions on the test table into per-visitor submission files.

Features:
    - Per-visitor aggregation of predicted revenue
    - Join with the lookup table of visitors to score
    - One submission CSV per model
"""

import logging
from pathlib import Path
from typing import Dict, Any

import pandas as pd

from .evaluation import aggregate_by_visitor
from .model import RevenueModel

logger = logging.getLogger(__name__)


def predict_visitor_revenue(
    model: RevenueModel,
    features: pd.DataFrame,
    visitor_ids: pd.Series,
    id_column: str = "fullVisitorId",
    value_column: str = "PredictedLogRevenue"
) -> pd.DataFrame:
    """
    Predict session revenue and aggregate it per visitor.

    Args:
        model: Trained model
        features: Test feature table
        visitor_ids: Visitor id per test row
        id_column: Output identifier column name
        value_column: Output prediction column name

    Returns:
        DataFrame with one row per visitor
    """
    session_pred = model.predict(features)
    by_visitor = aggregate_by_visitor(session_pred, visitor_ids)

    return pd.DataFrame({
        id_column: by_visitor.index.astype(str),
        value_column: by_visitor.values
    })


def build_submission(
    predictions: pd.DataFrame,
    lookup: pd.DataFrame,
    id_column: str = "fullVisitorId",
    value_column: str = "PredictedLogRevenue"
) -> pd.DataFrame:
    """
    Fill the lookup table with predictions.

    Visitors without a prediction keep the lookup table's default value.
    Row order and row count follow the lookup table.

    Args:
        predictions: Per-visitor predictions
        lookup: Visitor id -> default prediction
        id_column: Identifier column
        value_column: Prediction column

    Returns:
        Submission DataFrame with id_column and value_column
    """
    predicted = predictions.set_index(id_column)[value_column]
    values = lookup[id_column].map(predicted)

    missing = int(values.isna().sum())
    if missing:
        logger.info(f"{missing} visitors without a prediction keep the default value")

    submission = lookup[[id_column]].copy()
    submission[value_column] = values.fillna(lookup[value_column]).astype(float)
    return submission


def export_submission(
    submission: pd.DataFrame,
    output_dir: str,
    model_name: str
) -> str:
    """
    Write a submission CSV.

    Args:
        submission: Submission DataFrame
        output_dir: Directory to save the file
        model_name: Used in the file name

    Returns:
        Path to the saved file
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    filepath = output_dir / f"submission_{model_name}.csv"
    submission.to_csv(filepath, index=False)

    logger.info(f"Submission exported to {filepath}")
    return str(filepath)


def run_final_prediction(
    models: Dict[str, RevenueModel],
    features: pd.DataFrame,
    visitor_ids: pd.Series,
    lookup: pd.DataFrame,
    output_dir: str = "data/predictions/",
    id_column: str = "fullVisitorId",
    value_column: str = "PredictedLogRevenue"
) -> Dict[str, Any]:
    """
    Write one submission file per model.

    Args:
        models: Model name -> model trained on all training rows
        features: Test feature table
        visitor_ids: Visitor id per test row
        lookup: Visitor id -> default prediction
        output_dir: Directory for output files
        id_column: Identifier column
        value_column: Prediction column

    Returns:
        Dictionary containing submissions and file paths per model
    """
    logger.info("=" * 60)
    logger.info("STARTING FINAL PREDICTION")
    logger.info("=" * 60)

    submissions = {}
    paths = {}
    for name, model in models.items():
        logger.info(f"Predicting with {name}...")
        predictions = predict_visitor_revenue(model, features, visitor_ids, id_column, value_column)
        submission = build_submission(predictions, lookup, id_column, value_column)
        submissions[name] = submission
        paths[name] = export_submission(submission, output_dir, name)

    logger.info("=" * 60)
    logger.info("PREDICTION COMPLETE")
    logger.info(f"  Visitors scored: {len(lookup)}")
    logger.info(f"  Output: {list(paths.values())}")
    logger.info("=" * 60)

    return {
        'submissions': submissions,
        'paths': paths
    }


def print_prediction_results(result: Dict[str, Any], value_column: str = "PredictedLogRevenue") -> None:
    """
    Print formatted prediction results to console.

    Args:
        result: Result dictionary from run_final_prediction
        value_column: Prediction column
    """
    print("\n" + "=" * 70)
    print("PREDICTION RESULTS")
    print("=" * 70)
    print(f"{'Model':<12} {'Visitors':<12} {'Paying (>0)':<14} {'Mean':<12} {'Max':<12}")
    print("-" * 70)

    for name, submission in result['submissions'].items():
        values = submission[value_column]
        print(f"{name:<12} {len(values):<12} {int((values > 0).sum()):<14} "
              f"{values.mean():<12.4f} {values.max():<12.4f}")

    print("-" * 70)
    for name, path in result['paths'].items():
        print(f"  {name}: {path}")
    print("=" * 70 + "\n")

#!/usr/bin/env python3
"""
Revenue EDA - Main Pipeline
===========================

Orchestrates exploratory analysis and baseline modeling for customer revenue
prediction on session exports with JSON-encoded columns.

Phases:
    1. Flatten - Expand nested columns, normalize missing values, reconcile train/test
    2. EDA - Exploratory Data Analysis on the training sessions
    3. Training - Linear and gradient-boosted baselines on log revenue
    4. Evaluation - Validation metrics on held-out visitors
    5. Prediction - Refit on all sessions and write submission files

Usage:
    # Run complete pipeline
    python main.py --train data/raw/train.csv --test data/raw/test.csv

    # Run specific phase
    python main.py --phase eda

    # Run on a sample with custom config
    python main.py --nrows 50000 --config config/config.yaml
"""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional

import pandas as pd

# Add package root to path
sys.path.insert(0, str(Path(__file__).parent))

from revenue_eda.data_loader import (
    load_config, load_raw_data, load_lookup_table, validate_raw_data, print_data_summary
)
from revenue_eda.schema import prepare_datasets, print_schema_summary
from revenue_eda.eda import generate_eda_report, print_correlation_insights
from revenue_eda.preprocessing import prepare_features, print_preprocessing_summary
from revenue_eda.model import RevenueModel, train_model, print_model_summary
from revenue_eda.evaluation import evaluate_models, print_evaluation_report
from revenue_eda.prediction import run_final_prediction, print_prediction_results
from revenue_eda.flattening import NESTED_COLUMNS

PHASES = ['flatten', 'eda', 'train', 'evaluate', 'predict']


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the pipeline."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(f'pipeline_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log')
        ]
    )


def load_inputs(
    config: Dict[str, Any],
    train_path: Optional[str] = None,
    test_path: Optional[str] = None,
    submission_path: Optional[str] = None,
    nrows: Optional[int] = None
) -> Dict[str, Any]:
    """
    Load the raw train/test exports and the lookup table.

    Command-line paths take precedence over the 'data' configuration section.
    """
    data_config = config.get('data', {})
    nested_columns = config.get('flatten', {}).get('nested_columns', list(NESTED_COLUMNS))
    id_columns = config.get('features', {}).get(
        'identifier_columns', ['fullVisitorId', 'sessionId', 'visitId']
    )
    id_column = config.get('features', {}).get('id_column', 'fullVisitorId')
    nrows = nrows if nrows is not None else data_config.get('nrows')

    print("\n📊 Loading data...")
    train = load_raw_data(
        train_path or data_config.get('train_path', 'data/raw/train.csv'),
        id_columns=id_columns, nested_columns=nested_columns, nrows=nrows
    )
    test = load_raw_data(
        test_path or data_config.get('test_path', 'data/raw/test.csv'),
        id_columns=id_columns, nested_columns=nested_columns, nrows=nrows
    )
    lookup = load_lookup_table(
        submission_path or data_config.get('submission_path', 'data/raw/sample_submission.csv'),
        id_column=id_column
    )

    print_data_summary(train, title="RAW TRAIN SUMMARY")

    for name, df in (('train', train), ('test', test)):
        is_valid, _ = validate_raw_data(df, nested_columns, id_column=id_column, strict=False)
        if not is_valid:
            print(f"⚠️  Data validation warnings detected in {name}. Proceeding anyway...")

    return {'train': train, 'test': test, 'lookup': lookup}


def run_flatten(
    train_raw: pd.DataFrame,
    test_raw: pd.DataFrame,
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute Phase 1: Flattening and schema reconciliation.

    Args:
        train_raw: Raw training sessions
        test_raw: Raw test sessions
        config: Configuration dictionary

    Returns:
        Reconciliation result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 1: FLATTENING AND SCHEMA RECONCILIATION")
    print("=" * 70)

    result = prepare_datasets(train_raw, test_raw, config)
    print_schema_summary(result)

    return result


def run_eda(train: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 2: Exploratory Data Analysis.

    Args:
        train: Flattened, reconciled training table
        config: Configuration dictionary

    Returns:
        EDA report dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 2: EXPLORATORY DATA ANALYSIS")
    print("=" * 70)

    eda_config = config.get('eda', {})
    features_config = config.get('features', {})
    output_dir = config.get('output', {}).get('figures_path', 'reports/figures/')

    report = generate_eda_report(
        train,
        numeric_columns=features_config.get('numeric_columns', []),
        category_columns=eda_config.get('category_columns', []),
        target_column=features_config.get('target', 'transactionRevenue'),
        date_column=(features_config.get('date_columns') or ['date'])[0],
        output_dir=output_dir,
        correlation_method=eda_config.get('correlation_method', 'spearman'),
        show_plots=False
    )

    corr_df = pd.DataFrame(report["correlation_matrix"])
    print_correlation_insights(corr_df, threshold=eda_config.get('correlation_threshold', 0.5))

    print(f"\n✓ EDA complete. {len(report['figures'])} figures saved to {output_dir}")

    return report


def run_preprocessing(
    train: pd.DataFrame,
    test: pd.DataFrame,
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """Prepare model features for Phases 3-5."""
    models_path = Path(config.get('output', {}).get('models_path', 'models/'))

    result = prepare_features(
        train, test, config,
        save_preprocessor=str(models_path / 'preprocessor.joblib')
    )
    print_preprocessing_summary(result)

    return result


def run_training(
    features: Dict[str, Any],
    config: Dict[str, Any]
) -> Dict[str, RevenueModel]:
    """
    Execute Phase 3: Model Training on the fit split.

    Args:
        features: Result of prepare_features
        config: Configuration dictionary

    Returns:
        Model name -> trained model
    """
    print("\n" + "=" * 70)
    print("PHASE 3: MODEL TRAINING")
    print("=" * 70)

    kinds = config.get('model', {}).get('kinds', ['linear', 'gbm'])
    models_path = Path(config.get('output', {}).get('models_path', 'models/'))

    X_fit = features['X'].iloc[features['train_idx']]
    y_fit = features['y'].iloc[features['train_idx']]

    models = {}
    for kind in kinds:
        models[kind] = train_model(
            X_fit, y_fit, kind, config,
            save_path=str(models_path / f'{kind}_validation.joblib')
        )
        print_model_summary(models[kind])

    return models


def run_evaluation(
    models: Dict[str, RevenueModel],
    features: Dict[str, Any],
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute Phase 4: Model Evaluation on held-out visitors.

    Args:
        models: Trained models
        features: Result of prepare_features
        config: Configuration dictionary

    Returns:
        Evaluation result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 4: MODEL EVALUATION")
    print("=" * 70)

    valid_idx = features['valid_idx']
    X_valid = features['X'].iloc[valid_idx]
    y_valid = features['y'].iloc[valid_idx].values
    ids_valid = features['train_ids'].iloc[valid_idx]

    predictions = {name: model.predict(X_valid) for name, model in models.items()}

    result = evaluate_models(
        y_valid,
        predictions,
        visitor_ids=ids_valid,
        output_dir=config.get('output', {}).get('reports_path', 'reports/'),
        show_plots=False
    )

    print_evaluation_report(result['metrics'])

    return result


def run_final_prediction_phase(
    features: Dict[str, Any],
    lookup: pd.DataFrame,
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute Phase 5: Final Prediction.

    Retrains every baseline on all training sessions and writes one
    submission file per model.

    Args:
        features: Result of prepare_features
        lookup: Visitor id -> default prediction
        config: Configuration dictionary

    Returns:
        Prediction result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 5: FINAL PREDICTION")
    print("=" * 70)

    kinds = config.get('model', {}).get('kinds', ['linear', 'gbm'])
    models_path = Path(config.get('output', {}).get('models_path', 'models/'))
    id_column = config.get('features', {}).get('id_column', 'fullVisitorId')

    print(f"Retraining models on 100% of data ({len(features['X'])} sessions)...")

    models = {
        kind: train_model(
            features['X'], features['y'], kind, config,
            save_path=str(models_path / f'{kind}.joblib')
        )
        for kind in kinds
    }

    result = run_final_prediction(
        models,
        features['X_test'],
        features['test_ids'],
        lookup,
        output_dir=config.get('data', {}).get('predictions_path', 'data/predictions/'),
        id_column=id_column
    )

    print_prediction_results(result)

    return result


def run_full_pipeline(
    config_path: str = "config/config.yaml",
    train_path: Optional[str] = None,
    test_path: Optional[str] = None,
    submission_path: Optional[str] = None,
    nrows: Optional[int] = None
) -> Dict[str, Any]:
    """
    Execute the complete 5-phase pipeline.

    Args:
        config_path: Path to configuration file
        train_path: Raw training CSV (overrides config)
        test_path: Raw test CSV (overrides config)
        submission_path: Sample submission CSV (overrides config)
        nrows: Read only the first n rows of each export

    Returns:
        Dictionary containing all phase results
    """
    print("\n" + "=" * 70)
    print("REVENUE EDA PIPELINE")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    config = load_config(config_path)
    setup_logging(config.get('logging', {}).get('level', 'INFO'))

    inputs = load_inputs(config, train_path, test_path, submission_path, nrows)

    results = {'config': config}

    # Phase 1: Flatten
    results['flatten'] = run_flatten(inputs['train'], inputs['test'], config)
    train, test = results['flatten']['train'], results['flatten']['test']

    # Phase 2: EDA
    results['eda'] = run_eda(train, config)

    # Phase 3: Training
    results['features'] = run_preprocessing(train, test, config)
    results['models'] = run_training(results['features'], config)

    # Phase 4: Evaluation
    results['evaluation'] = run_evaluation(results['models'], results['features'], config)

    # Phase 5: Final Prediction
    results['prediction'] = run_final_prediction_phase(results['features'], inputs['lookup'], config)

    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  • Flattened train: {train.shape[0]} rows × {train.shape[1]} columns")
    for name, m in results['evaluation']['metrics'].items():
        print(f"  • {name} validation RMSE: {m['session']['rmse']:.4f}")
    for name, path in results['prediction']['paths'].items():
        print(f"  • {name} submission: {path}")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return results


def run_single_phase(
    phase: str,
    config_path: str = "config/config.yaml",
    train_path: Optional[str] = None,
    test_path: Optional[str] = None,
    submission_path: Optional[str] = None,
    nrows: Optional[int] = None
) -> Dict[str, Any]:
    """
    Execute a single phase of the pipeline, with the phases it depends on.

    Args:
        phase: Phase to run ('flatten', 'eda', 'train', 'evaluate', 'predict')
        config_path: Path to configuration file
        train_path: Raw training CSV (overrides config)
        test_path: Raw test CSV (overrides config)
        submission_path: Sample submission CSV (overrides config)
        nrows: Read only the first n rows of each export

    Returns:
        Phase result dictionary
    """
    if phase not in PHASES:
        raise ValueError(f"Unknown phase: {phase}. Choose from: {', '.join(PHASES)}")

    if phase == 'predict':
        return run_full_pipeline(config_path, train_path, test_path, submission_path, nrows)

    config = load_config(config_path)
    setup_logging(config.get('logging', {}).get('level', 'INFO'))

    inputs = load_inputs(config, train_path, test_path, submission_path, nrows)
    flat = run_flatten(inputs['train'], inputs['test'], config)

    if phase == 'flatten':
        return flat

    if phase == 'eda':
        return run_eda(flat['train'], config)

    features = run_preprocessing(flat['train'], flat['test'], config)
    models = run_training(features, config)

    if phase == 'train':
        return {'models': models, 'features': features}

    return run_evaluation(models, features, config)


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Exploratory analysis and baseline models for customer revenue prediction",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --train data/raw/train.csv --test data/raw/test.csv
  python main.py --phase eda
  python main.py --nrows 50000 --config config/custom.yaml
        """
    )

    parser.add_argument('--train', type=str, default=None,
                        help='Raw training CSV (default: data.train_path from config)')
    parser.add_argument('--test', type=str, default=None,
                        help='Raw test CSV (default: data.test_path from config)')
    parser.add_argument('--submission', type=str, default=None,
                        help='Sample submission CSV (default: data.submission_path from config)')

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/config.yaml',
        help='Path to configuration file (default: config/config.yaml)'
    )

    parser.add_argument(
        '--phase', '-p',
        type=str,
        choices=PHASES + ['all'],
        default='all',
        help='Phase to run (default: all)'
    )

    parser.add_argument(
        '--nrows', '-n',
        type=int,
        default=None,
        help='Read only the first N rows of each export'
    )

    args = parser.parse_args()

    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        sys.exit(1)

    for label, path in (('Training', args.train), ('Test', args.test), ('Submission', args.submission)):
        if path is not None and not Path(path).exists():
            print(f"Error: {label} file not found: {path}")
            sys.exit(1)

    try:
        if args.phase == 'all':
            run_full_pipeline(args.config, args.train, args.test, args.submission, args.nrows)
        else:
            run_single_phase(args.phase, args.config, args.train, args.test, args.submission, args.nrows)

        return 0

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

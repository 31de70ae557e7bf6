"""
Baseline Models
===============

Two baseline regressors on log revenue:
    - linear: median imputation, standardization and ridge regression
    - gbm: HistGradientBoostingRegressor (handles missing values natively)

Features:
    - Hyperparameter configuration via config file
    - Explicit random seed, never global state
    - Model persistence (save/load)
    - Training progress logging
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime

import numpy as np
import pandas as pd
import joblib
from sklearn.ensemble import HistGradientBoostingRegressor
from sklearn.impute import SimpleImputer
from sklearn.linear_model import Ridge
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

logger = logging.getLogger(__name__)

MODEL_KINDS = ("linear", "gbm")

DEFAULT_PARAMS = {
    "linear": {
        "alpha": 1.0,
    },
    "gbm": {
        "max_iter": 200,
        "max_depth": 8,
        "learning_rate": 0.05,
        "min_samples_leaf": 40,
        "l2_regularization": 0.1,
        "early_stopping": True,
        "validation_fraction": 0.1,
        "n_iter_no_change": 10,
    },
}


class RevenueModel:
    """
    Baseline regressor predicting log1p session revenue.

    Predictions are clipped at zero since revenue cannot be negative.
    """

    def __init__(self, kind: str = "gbm", random_state: int = 42, **params: Any):
        """
        Initialize the model.

        Args:
            kind: 'linear' or 'gbm'
            random_state: Random seed passed to the estimator
            **params: Hyperparameters overriding DEFAULT_PARAMS[kind]
        """
        if kind not in MODEL_KINDS:
            raise ValueError(f"Unknown model kind: {kind}. Choose from: {', '.join(MODEL_KINDS)}")

        self.kind = kind
        self.random_state = random_state
        self.params = {**DEFAULT_PARAMS[kind], **params}

        self.model = None
        self.feature_names_: Optional[list] = None
        self.training_info: Dict[str, Any] = {}
        self._is_fitted = False

    def _create_estimator(self):
        if self.kind == "linear":
            return Pipeline([
                ("impute", SimpleImputer(strategy="median", keep_empty_features=True)),
                ("scale", StandardScaler()),
                ("ridge", Ridge(random_state=self.random_state, **self.params)),
            ])
        return HistGradientBoostingRegressor(
            random_state=self.random_state,
            verbose=0,
            **self.params
        )

    def fit(self, X: pd.DataFrame, y: pd.Series) -> 'RevenueModel':
        """
        Train the model.

        Args:
            X: Feature table
            y: Log-revenue target

        Returns:
            Self for method chaining
        """
        start_time = datetime.now()

        logger.info("=" * 60)
        logger.info(f"TRAINING {self.kind.upper()} MODEL")
        logger.info("=" * 60)
        logger.info(f"Training data shape: X={X.shape}, y={y.shape}")
        for name, value in self.params.items():
            logger.info(f"  - {name}: {value}")

        self.feature_names_ = list(X.columns)
        self.model = self._create_estimator()
        self.model.fit(X, y)

        end_time = datetime.now()
        training_duration = (end_time - start_time).total_seconds()

        self.training_info = {
            'training_duration_seconds': training_duration,
            'n_samples': int(X.shape[0]),
            'n_features': int(X.shape[1]),
            'trained_at': end_time.isoformat(),
            'hyperparameters': dict(self.params)
        }
        if self.kind == "gbm":
            self.training_info['actual_iterations'] = int(self.model.n_iter_)
            logger.info(f"Actual iterations: {self.model.n_iter_}")

        self._is_fitted = True

        logger.info(f"{self.kind} model trained in {training_duration:.2f} seconds")
        return self

    def predict(self, X: pd.DataFrame) -> np.ndarray:
        """
        Predict log1p revenue.

        Args:
            X: Feature table with the training columns

        Returns:
            Non-negative predictions
        """
        if not self._is_fitted:
            raise ValueError("Model must be trained before prediction. Call fit() first.")

        if list(X.columns) != self.feature_names_:
            raise ValueError(
                f"Expected {len(self.feature_names_)} features in training order, "
                f"but got {X.shape[1]}"
            )

        return np.clip(self.model.predict(X), 0, None)

    def get_coefficients(self) -> pd.Series:
        """Standardized coefficients of the linear model, largest magnitude first."""
        if not self._is_fitted:
            raise ValueError("Model must be trained first.")
        if self.kind != "linear":
            raise ValueError("Coefficients are only available for the linear model.")

        coef = pd.Series(self.model.named_steps["ridge"].coef_, index=self.feature_names_)
        return coef.reindex(coef.abs().sort_values(ascending=False).index)

    def save(self, filepath: str) -> None:
        """
        Save the trained model to disk.

        Args:
            filepath: Path to save the model
        """
        if not self._is_fitted:
            raise ValueError("Cannot save untrained model.")

        state = {
            'kind': self.kind,
            'random_state': self.random_state,
            'params': self.params,
            'model': self.model,
            'feature_names_': self.feature_names_,
            'training_info': self.training_info,
            '_is_fitted': self._is_fitted
        }

        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(state, filepath)
        logger.info(f"Model saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'RevenueModel':
        """
        Load a trained model from disk.

        Args:
            filepath: Path to the saved model

        Returns:
            Loaded RevenueModel instance
        """
        state = joblib.load(filepath)

        model = cls(state['kind'], random_state=state['random_state'], **state['params'])
        model.model = state['model']
        model.feature_names_ = state['feature_names_']
        model.training_info = state['training_info']
        model._is_fitted = state['_is_fitted']

        logger.info(f"Model loaded from {filepath}")
        return model


def train_model(
    X_train: pd.DataFrame,
    y_train: pd.Series,
    kind: str,
    config: Dict[str, Any],
    save_path: Optional[str] = None
) -> RevenueModel:
    """
    Train a baseline model using configuration parameters.

    Args:
        X_train: Training features
        y_train: Training target
        kind: 'linear' or 'gbm'
        config: Configuration dictionary
        save_path: Path to save the trained model (optional)

    Returns:
        Trained RevenueModel
    """
    params = config.get('model', {}).get(kind, {})

    model = RevenueModel(kind, random_state=config.get('seed', 42), **params)
    model.fit(X_train, y_train)

    if save_path:
        model.save(save_path)

    return model


def print_model_summary(model: RevenueModel) -> None:
    """
    Print a summary of the trained model.

    Args:
        model: Trained model instance
    """
    print("\n" + "=" * 50)
    print(f"MODEL SUMMARY - {model.kind.upper()}")
    print("=" * 50)
    print(f"Number of input features: {len(model.feature_names_ or [])}")
    print(f"Random state: {model.random_state}")
    print(f"\nHyperparameters:")
    for name, value in model.params.items():
        print(f"  - {name}: {value}")

    if model.training_info:
        print(f"\nTraining Info:")
        print(f"  - Duration: {model.training_info.get('training_duration_seconds', 0.0):.2f}s")
        print(f"  - Samples: {model.training_info.get('n_samples', 'N/A')}")
        if 'actual_iterations' in model.training_info:
            print(f"  - Actual iterations: {model.training_info['actual_iterations']}")

    if model.kind == "linear" and model._is_fitted:
        print(f"\nLargest coefficients:")
        for name, value in model.get_coefficients().head(10).items():
            print(f"  {name:<40} {value:+.4f}")

    print("=" * 50 + "\n")

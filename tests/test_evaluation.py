"""
Test Suite for Evaluation Module
================================
"""

import json

import matplotlib
matplotlib.use("Agg")

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from revenue_eda.evaluation import aggregate_by_visitor, calculate_metrics, evaluate_models


class TestAggregateByVisitor:
    """Tests for aggregate_by_visitor."""

    def test_sums_revenue_before_log(self):
        log_values = np.log1p([10.0, 20.0, 0.0, 5.0])
        visitors = pd.Series(['b', 'b', 'a', 'a'])

        out = aggregate_by_visitor(log_values, visitors)

        assert list(out.index) == ['a', 'b']
        assert out['b'] == pytest.approx(np.log1p(30.0))
        assert out['a'] == pytest.approx(np.log1p(5.0))

    def test_non_paying_visitor_is_zero(self):
        out = aggregate_by_visitor(np.zeros(3), pd.Series(['x', 'x', 'y']))

        assert out.tolist() == [0.0, 0.0]


class TestCalculateMetrics:
    """Tests for calculate_metrics."""

    def test_perfect_prediction(self):
        y = np.array([0.0, 0.0, 12.5, 3.0])
        metrics = calculate_metrics(y, y, pd.Series(['1', '1', '2', '3']))

        assert metrics['session']['rmse'] == pytest.approx(0.0)
        assert metrics['session']['mae'] == pytest.approx(0.0)
        assert metrics['session']['n_paying'] == 2
        assert metrics['visitor']['rmse'] == pytest.approx(0.0)
        assert metrics['visitor']['n_visitors'] == 3

    def test_known_rmse(self):
        metrics = calculate_metrics(np.array([0.0, 2.0]), np.array([1.0, 1.0]))

        assert metrics['session']['rmse'] == pytest.approx(1.0)
        assert 'visitor' not in metrics

    def test_visitor_rmse_differs_from_session(self):
        y_true = np.log1p([100.0, 0.0])
        y_pred = np.log1p([0.0, 100.0])

        metrics = calculate_metrics(y_true, y_pred, pd.Series(['v', 'v']))

        assert metrics['session']['rmse'] > 0
        assert metrics['visitor']['rmse'] == pytest.approx(0.0)


class TestEvaluateModels:
    """Tests for evaluate_models."""

    def test_writes_report(self, tmp_path):
        y_true = np.array([0.0, 0.0, 10.0, 0.0, 14.0, 0.0])
        predictions = {
            'linear': np.array([0.5, 0.1, 8.0, 0.0, 12.0, 0.3]),
            'gbm': np.array([0.0, 0.0, 9.5, 0.0, 13.5, 0.1]),
        }
        visitors = pd.Series(['1', '2', '2', '3', '4', '4'])

        result = evaluate_models(y_true, predictions, visitors, output_dir=str(tmp_path))

        assert result['best_model'] == 'gbm'
        assert set(result['metrics']) == {'linear', 'gbm'}
        for name in result['figures']:
            assert (tmp_path / 'figures' / name).exists()

        with open(result['metrics_file']) as f:
            saved = json.load(f)
        assert saved['gbm']['session']['rmse'] == pytest.approx(result['metrics']['gbm']['session']['rmse'])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

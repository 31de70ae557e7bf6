"""
Model Evaluation Module
=======================

Compares the baseline models on the held-out visitors.

Features:
    - Session-level RMSE, MAE, R² on log revenue
    - Visitor-level RMSE (revenue summed per visitor before the log)
    - Actual vs Predicted and residual plots per model
    - Model comparison chart and JSON metrics report
"""

import logging
import json
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.metrics import mean_squared_error, mean_absolute_error, r2_score

logger = logging.getLogger(__name__)


def aggregate_by_visitor(log_values: np.ndarray, visitor_ids: pd.Series) -> pd.Series:
    """
    Sum session revenue per visitor and return it on the log1p scale.

    Args:
        log_values: Per-session log1p revenue
        visitor_ids: Visitor id per session

    Returns:
        Series of log1p total revenue indexed by visitor id
    """
    revenue = pd.Series(np.expm1(np.asarray(log_values, dtype=float)), index=np.asarray(visitor_ids))
    return np.log1p(revenue.groupby(level=0, sort=True).sum())


def calculate_metrics(
    y_true: np.ndarray,
    y_pred: np.ndarray,
    visitor_ids: Optional[pd.Series] = None
) -> Dict[str, Any]:
    """
    Calculate evaluation metrics on the log1p revenue scale.

    Args:
        y_true: Actual log1p revenue per session
        y_pred: Predicted log1p revenue per session
        visitor_ids: Visitor id per session (enables visitor-level metrics)

    Returns:
        Dictionary containing 'session' and, when ids are given, 'visitor' metrics
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)

    metrics = {
        'session': {
            'rmse': float(np.sqrt(mean_squared_error(y_true, y_pred))),
            'mae': float(mean_absolute_error(y_true, y_pred)),
            'r2': float(r2_score(y_true, y_pred)) if len(y_true) > 1 else float('nan'),
            'n_samples': int(len(y_true)),
            'n_paying': int((y_true > 0).sum())
        }
    }

    if visitor_ids is not None:
        true_by_visitor = aggregate_by_visitor(y_true, visitor_ids)
        pred_by_visitor = aggregate_by_visitor(y_pred, visitor_ids)
        metrics['visitor'] = {
            'rmse': float(np.sqrt(mean_squared_error(true_by_visitor, pred_by_visitor))),
            'n_visitors': int(len(true_by_visitor))
        }

    return metrics


def plot_actual_vs_predicted(
    y_true: np.ndarray,
    y_pred: np.ndarray,
    model_name: str,
    figsize: Tuple[int, int] = (7, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Scatter of actual vs predicted log revenue.

    Args:
        y_true: Actual values
        y_pred: Predicted values
        model_name: Name used in the title
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)

    ax.scatter(y_true, y_pred, alpha=0.4, s=12)

    max_val = max(float(np.max(y_true)), float(np.max(y_pred)), 1.0)
    ax.plot([0, max_val], [0, max_val], 'r--', linewidth=2, label='Perfect')

    rmse = np.sqrt(mean_squared_error(y_true, y_pred))
    ax.set_xlabel('Actual log1p(revenue)')
    ax.set_ylabel('Predicted log1p(revenue)')
    ax.set_title(f'{model_name}: Actual vs Predicted (RMSE={rmse:.4f})', fontweight='bold')
    ax.legend(loc='upper left')

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Actual vs Predicted plot saved to {save_path}")

    return fig


def plot_residuals(
    y_true: np.ndarray,
    y_pred: np.ndarray,
    model_name: str,
    figsize: Tuple[int, int] = (12, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Residual distribution, split into paying and non-paying sessions.

    Args:
        y_true: Actual values
        y_pred: Predicted values
        model_name: Name used in the title
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    y_true = np.asarray(y_true, dtype=float)
    residuals = y_true - np.asarray(y_pred, dtype=float)
    paying = y_true > 0

    fig, axes = plt.subplots(1, 2, figsize=figsize)

    for ax, mask, label in ((axes[0], ~paying, 'Non-paying sessions'), (axes[1], paying, 'Paying sessions')):
        res = residuals[mask]
        if len(res) == 0:
            ax.text(0.5, 0.5, 'No sessions', ha='center', va='center', transform=ax.transAxes)
        else:
            sns.histplot(res, kde=len(res) > 1, ax=ax, bins=50, alpha=0.7)
            ax.axvline(0, color='red', linestyle='--', linewidth=2, label='Zero')
            ax.axvline(np.mean(res), color='green', linestyle='--',
                       linewidth=2, label=f'Mean: {np.mean(res):.4f}')
            ax.legend(fontsize=8)
        ax.set_xlabel('Residual (Actual - Predicted)')
        ax.set_title(f'{label} (n={int(mask.sum())})', fontsize=10, fontweight='bold')

    plt.suptitle(f'{model_name}: Residual Analysis', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Residuals plot saved to {save_path}")

    return fig


def plot_model_comparison(
    metrics_by_model: Dict[str, Dict[str, Any]],
    figsize: Tuple[int, int] = (10, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Bar chart of session and visitor RMSE per model.

    Args:
        metrics_by_model: Model name -> calculate_metrics result
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    names = list(metrics_by_model)
    session_rmse = [metrics_by_model[n]['session']['rmse'] for n in names]
    visitor_rmse = [metrics_by_model[n].get('visitor', {}).get('rmse', np.nan) for n in names]

    fig, ax = plt.subplots(figsize=figsize)

    x = np.arange(len(names))
    width = 0.35
    ax.bar(x - width / 2, session_rmse, width, color='steelblue', alpha=0.8, label='Session RMSE')
    ax.bar(x + width / 2, visitor_rmse, width, color='coral', alpha=0.8, label='Visitor RMSE')

    ax.set_xticks(x)
    ax.set_xticklabels(names)
    ax.set_ylabel('RMSE (log1p revenue)')
    ax.set_title('Baseline Model Comparison', fontsize=14, fontweight='bold')
    ax.legend()

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Model comparison plot saved to {save_path}")

    return fig


def evaluate_models(
    y_true: np.ndarray,
    predictions: Dict[str, np.ndarray],
    visitor_ids: Optional[pd.Series] = None,
    output_dir: str = "reports/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Evaluate every model on the same validation rows and write reports.

    Args:
        y_true: Actual log1p revenue
        predictions: Model name -> predicted log1p revenue
        visitor_ids: Visitor id per validation row
        output_dir: Directory for output files
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing metrics per model, figure names and the metrics file
    """
    output_dir = Path(output_dir)
    figures_dir = output_dir / "figures"
    metrics_dir = output_dir / "metrics"

    figures_dir.mkdir(parents=True, exist_ok=True)
    metrics_dir.mkdir(parents=True, exist_ok=True)

    logger.info("=" * 60)
    logger.info("STARTING MODEL EVALUATION")
    logger.info("=" * 60)

    metrics = {}
    figures: List[str] = []

    for name, y_pred in predictions.items():
        logger.info(f"Evaluating {name}...")
        metrics[name] = calculate_metrics(y_true, y_pred, visitor_ids)

        plot_actual_vs_predicted(
            y_true, y_pred, name,
            save_path=str(figures_dir / f"eval_{name}_actual_vs_predicted.png")
        )
        figures.append(f"eval_{name}_actual_vs_predicted.png")

        plot_residuals(
            y_true, y_pred, name,
            save_path=str(figures_dir / f"eval_{name}_residuals.png")
        )
        figures.append(f"eval_{name}_residuals.png")

    plot_model_comparison(metrics, save_path=str(figures_dir / "eval_model_comparison.png"))
    figures.append("eval_model_comparison.png")

    metrics_file = metrics_dir / "evaluation_metrics.json"
    with open(metrics_file, 'w') as f:
        json.dump(metrics, f, indent=2)
    logger.info(f"Metrics saved to {metrics_file}")

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    best = min(metrics, key=lambda n: metrics[n]['session']['rmse']) if metrics else None

    logger.info("=" * 60)
    logger.info("EVALUATION COMPLETE")
    for name, m in metrics.items():
        logger.info(f"  {name}: session RMSE {m['session']['rmse']:.6f}")
    logger.info("=" * 60)

    return {
        'metrics': metrics,
        'best_model': best,
        'figures': figures,
        'metrics_file': str(metrics_file)
    }


def print_evaluation_report(metrics: Dict[str, Dict[str, Any]]) -> None:
    """
    Print a formatted evaluation report to console.

    Args:
        metrics: Model name -> calculate_metrics result
    """
    print("\n" + "=" * 70)
    print("MODEL EVALUATION REPORT")
    print("=" * 70)
    print(f"{'Model':<12} {'Session RMSE':<15} {'MAE':<12} {'R²':<12} {'Visitor RMSE':<15}")
    print("-" * 70)

    for name, m in metrics.items():
        visitor_rmse = m.get('visitor', {}).get('rmse')
        visitor_text = f"{visitor_rmse:<15.6f}" if visitor_rmse is not None else f"{'N/A':<15}"
        print(f"{name:<12} {m['session']['rmse']:<15.6f} {m['session']['mae']:<12.6f} "
              f"{m['session']['r2']:<12.6f} {visitor_text}")

    print("-" * 70)
    if metrics:
        best = min(metrics, key=lambda n: metrics[n]['session']['rmse'])
        print(f"\nLowest session RMSE: {best}")
    print("=" * 70 + "\n")

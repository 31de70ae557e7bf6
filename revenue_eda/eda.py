"""
Exploratory Data Analysis (EDA) Module
======================================

Provides analysis and visualization of the flattened training sessions.

Functions:
    - plot_missing_values: Share of missing cells per column
    - plot_target_distribution: Log revenue of paying sessions
    - plot_revenue_by_category: Sessions and revenue per category level
    - plot_sessions_over_time: Daily sessions and revenue
    - plot_correlation_matrix: Correlation heatmap
    - generate_eda_report: Full EDA report with all visualizations
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Sequence, Tuple

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats

from .preprocessing import log_revenue

logger = logging.getLogger(__name__)

# Set style for all plots
plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")


def _numeric_frame(df: pd.DataFrame, columns: Sequence[str]) -> pd.DataFrame:
    present = [c for c in columns if c in df.columns]
    return pd.DataFrame(
        {c: pd.to_numeric(df[c], errors='coerce') for c in present},
        index=df.index
    )


def _parse_dates(series: pd.Series, date_format: str = "%Y%m%d") -> pd.Series:
    text = pd.to_numeric(series, errors='coerce').astype('Int64').astype(str)
    return pd.to_datetime(text, format=date_format, errors='coerce')


def plot_missing_values(
    df: pd.DataFrame,
    top_n: int = 30,
    figsize: Tuple[int, int] = (10, 8),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, pd.Series]:
    """
    Horizontal bar chart of the share of missing cells per column.

    Args:
        df: Flattened, normalized table
        top_n: Number of columns shown
        figsize: Figure size (width, height)
        save_path: Path to save the figure (optional)

    Returns:
        Tuple of (Figure, missing share per column, descending)
    """
    missing = df.isna().mean().sort_values(ascending=False)
    shown = missing[missing > 0].head(top_n)

    fig, ax = plt.subplots(figsize=figsize)

    if shown.empty:
        ax.text(0.5, 0.5, 'No missing values', ha='center', va='center', transform=ax.transAxes)
    else:
        ax.barh(shown.index.astype(str)[::-1], shown.values[::-1] * 100, color='steelblue', alpha=0.8)
        ax.set_xlabel('Missing (%)')
        ax.set_xlim(0, 100)

    ax.set_title(f'Missing Values (top {top_n} columns)', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Missing value plot saved to {save_path}")

    return fig, missing


def plot_target_distribution(
    df: pd.DataFrame,
    target_column: str = "transactionRevenue",
    figsize: Tuple[int, int] = (12, 5),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, Dict[str, float]]:
    """
    Distribution of log1p revenue over paying sessions.

    Args:
        df: Flattened table containing the target
        target_column: Revenue column
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Tuple of (Figure, target statistics)
    """
    target = log_revenue(df[target_column])
    paying = target[target > 0]

    target_stats = {
        'n_sessions': int(len(target)),
        'n_paying': int(len(paying)),
        'paying_share': float(len(paying) / len(target)) if len(target) else 0.0,
        'mean_log_revenue_paying': float(paying.mean()) if len(paying) else float('nan'),
        'normality_p_value': float('nan')
    }

    fig, axes = plt.subplots(1, 2, figsize=figsize)

    axes[0].bar(['No revenue', 'Revenue'],
                [len(target) - len(paying), len(paying)],
                color=['lightgray', 'seagreen'], alpha=0.8)
    axes[0].set_ylabel('Sessions')
    axes[0].set_title(f"Paying sessions: {target_stats['paying_share'] * 100:.2f}%",
                      fontsize=10, fontweight='bold')

    if len(paying) > 0:
        sns.histplot(paying, kde=len(paying) > 1, ax=axes[1], bins=50, alpha=0.7)
        axes[1].axvline(paying.mean(), color='red', linestyle='--', label=f'Mean: {paying.mean():.2f}')
        axes[1].axvline(paying.median(), color='green', linestyle='--', label=f'Median: {paying.median():.2f}')
        axes[1].legend(fontsize=8)

        # normaltest needs at least 8 observations
        if len(paying) >= 8:
            _, p_value = stats.normaltest(paying)
            target_stats['normality_p_value'] = float(p_value)
            normality = "Normal" if p_value > 0.05 else "Non-Normal"
            axes[1].set_title(f'log1p(revenue), paying ({normality}, p={p_value:.3f})',
                              fontsize=10, fontweight='bold')
        else:
            axes[1].set_title('log1p(revenue), paying', fontsize=10, fontweight='bold')
    else:
        axes[1].text(0.5, 0.5, 'No paying sessions', ha='center', va='center',
                     transform=axes[1].transAxes)

    plt.suptitle('Target Distribution', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Target distribution plot saved to {save_path}")

    return fig, target_stats


def plot_revenue_by_category(
    df: pd.DataFrame,
    category_columns: Sequence[str],
    target_column: str = "transactionRevenue",
    top_n: int = 10,
    figsize_per_row: Tuple[int, int] = (14, 4),
    save_path: Optional[str] = None
) -> Optional[plt.Figure]:
    """
    Session counts and mean paying revenue for the most frequent levels.

    Args:
        df: Flattened table containing the target
        category_columns: Columns to break down
        target_column: Revenue column
        top_n: Levels shown per column
        figsize_per_row: Size of one row of panels
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object, or None if no column is present
    """
    columns = [c for c in category_columns if c in df.columns]
    if not columns:
        logger.warning("No category columns present, skipping revenue breakdown")
        return None

    target = log_revenue(df[target_column])

    fig, axes = plt.subplots(
        len(columns), 2,
        figsize=(figsize_per_row[0], figsize_per_row[1] * len(columns)),
        squeeze=False
    )

    for idx, col in enumerate(columns):
        levels = df[col].fillna('(missing)').astype(str)
        counts = levels.value_counts().head(top_n)

        paying = target > 0
        mean_revenue = target[paying].groupby(levels[paying]).mean().reindex(counts.index)

        axes[idx, 0].barh(counts.index[::-1], counts.values[::-1], color='steelblue', alpha=0.8)
        axes[idx, 0].set_title(f'{col}: sessions', fontsize=10, fontweight='bold')

        axes[idx, 1].barh(mean_revenue.index[::-1], mean_revenue.fillna(0).values[::-1],
                          color='coral', alpha=0.8)
        axes[idx, 1].set_title(f'{col}: mean log1p(revenue), paying', fontsize=10, fontweight='bold')

    plt.suptitle('Revenue by Category', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Category breakdown saved to {save_path}")

    return fig


def plot_sessions_over_time(
    df: pd.DataFrame,
    date_column: str = "date",
    target_column: str = "transactionRevenue",
    figsize: Tuple[int, int] = (14, 8),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, pd.DataFrame]:
    """
    Daily session count and total revenue.

    Args:
        df: Flattened table containing the date and target
        date_column: Column with yyyymmdd dates
        target_column: Revenue column
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Tuple of (Figure, daily DataFrame with 'sessions' and 'revenue')
    """
    dates = _parse_dates(df[date_column])
    revenue = pd.to_numeric(df[target_column], errors='coerce').fillna(0)

    daily = pd.DataFrame({'date': dates, 'revenue': revenue}).dropna(subset=['date'])
    daily = daily.groupby('date').agg(sessions=('revenue', 'size'), revenue=('revenue', 'sum'))

    fig, axes = plt.subplots(2, 1, figsize=figsize, sharex=True)

    axes[0].plot(daily.index, daily['sessions'], linewidth=0.9)
    axes[0].set_ylabel('Sessions')
    axes[0].set_title('Daily Sessions', fontsize=12, fontweight='bold')

    axes[1].plot(daily.index, daily['revenue'], color='seagreen', linewidth=0.9)
    axes[1].set_ylabel('Revenue')
    axes[1].set_title('Daily Revenue', fontsize=12, fontweight='bold')

    plt.suptitle('Sessions Over Time', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Time series plot saved to {save_path}")

    return fig, daily


def plot_correlation_matrix(
    df: pd.DataFrame,
    method: str = 'pearson',
    figsize: Tuple[int, int] = (10, 8),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, pd.DataFrame]:
    """
    Create a correlation heatmap for all columns of a numeric table.

    Args:
        df: DataFrame with numerical data
        method: Correlation method ('pearson', 'spearman', 'kendall')
        figsize: Figure size (width, height)
        save_path: Path to save the figure (optional)

    Returns:
        Tuple of (Figure, correlation matrix DataFrame)
    """
    corr_matrix = df.corr(method=method)

    fig, ax = plt.subplots(figsize=figsize)

    mask = np.triu(np.ones_like(corr_matrix, dtype=bool), k=1)
    sns.heatmap(
        corr_matrix,
        mask=mask,
        annot=True,
        fmt='.3f',
        cmap='RdYlBu_r',
        center=0,
        square=True,
        linewidths=0.5,
        cbar_kws={"shrink": 0.8, "label": "Correlation"},
        ax=ax,
        vmin=-1,
        vmax=1
    )

    ax.set_title(f'Correlation Matrix ({method.capitalize()})',
                 fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Correlation matrix saved to {save_path}")

    return fig, corr_matrix


def generate_eda_report(
    df: pd.DataFrame,
    numeric_columns: Sequence[str],
    category_columns: Sequence[str],
    target_column: str = "transactionRevenue",
    date_column: str = "date",
    output_dir: str = "reports/figures/",
    correlation_method: str = 'spearman',
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Generate a complete EDA report with all visualizations.

    Args:
        df: Flattened, normalized training table
        numeric_columns: Declared numeric columns
        category_columns: Columns for the revenue breakdown
        target_column: Revenue column
        date_column: Column with yyyymmdd dates
        output_dir: Directory to save figures
        correlation_method: Correlation method for the heatmap
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing EDA results and file paths
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report = {
        "data_shape": df.shape,
        "columns": list(df.columns),
        "figures": [],
        "missing_share": {},
        "target": {},
        "correlation_matrix": None,
        "statistics": {}
    }

    logger.info("=" * 60)
    logger.info("STARTING EXPLORATORY DATA ANALYSIS")
    logger.info("=" * 60)

    # 1. Missing values
    logger.info("Plotting missing values...")
    _, missing = plot_missing_values(df, save_path=str(output_dir / "01_missing_values.png"))
    report["figures"].append("01_missing_values.png")
    report["missing_share"] = {col: float(v) for col, v in missing.items()}

    # 2. Target
    logger.info("Plotting target distribution...")
    _, target_stats = plot_target_distribution(
        df, target_column,
        save_path=str(output_dir / "02_target_distribution.png")
    )
    report["figures"].append("02_target_distribution.png")
    report["target"] = target_stats

    # 3. Category breakdown
    logger.info("Breaking revenue down by category...")
    fig_cat = plot_revenue_by_category(
        df, category_columns, target_column,
        save_path=str(output_dir / "03_revenue_by_category.png")
    )
    if fig_cat is not None:
        report["figures"].append("03_revenue_by_category.png")

    # 4. Time
    if date_column in df.columns:
        logger.info("Plotting sessions over time...")
        plot_sessions_over_time(
            df, date_column, target_column,
            save_path=str(output_dir / "04_sessions_over_time.png")
        )
        report["figures"].append("04_sessions_over_time.png")

    # 5. Correlation
    numeric = _numeric_frame(df, numeric_columns)
    numeric[f"log_{target_column}"] = log_revenue(df[target_column])
    numeric = numeric.loc[:, numeric.notna().any()]

    logger.info("Computing correlation matrix...")
    _, corr_matrix = plot_correlation_matrix(
        numeric,
        method=correlation_method,
        save_path=str(output_dir / "05_correlation_matrix.png")
    )
    report["figures"].append("05_correlation_matrix.png")
    report["correlation_matrix"] = corr_matrix.to_dict()

    for col in numeric.columns:
        report["statistics"][col] = {
            "mean": float(numeric[col].mean()),
            "std": float(numeric[col].std()),
            "min": float(numeric[col].min()),
            "max": float(numeric[col].max()),
            "skew": float(numeric[col].skew()),
            "missing": float(numeric[col].isna().mean())
        }

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info("EDA COMPLETE - All figures saved to: %s", output_dir)
    logger.info("=" * 60)

    return report


def print_correlation_insights(corr_matrix: pd.DataFrame, threshold: float = 0.5) -> List[Dict[str, Any]]:
    """
    Print insights about strongly correlated variables.

    Args:
        corr_matrix: Correlation matrix DataFrame
        threshold: Correlation threshold for "strong" correlation

    Returns:
        Strongly correlated pairs, strongest first
    """
    print("\n" + "=" * 50)
    print("CORRELATION INSIGHTS")
    print("=" * 50)

    strong_corr = []
    for i in range(len(corr_matrix.columns)):
        for j in range(i + 1, len(corr_matrix.columns)):
            corr_val = corr_matrix.iloc[i, j]
            if pd.notna(corr_val) and abs(corr_val) >= threshold:
                strong_corr.append({
                    "col1": corr_matrix.columns[i],
                    "col2": corr_matrix.columns[j],
                    "correlation": float(corr_val)
                })

    strong_corr.sort(key=lambda x: abs(x["correlation"]), reverse=True)

    if strong_corr:
        print(f"\nStrong correlations (|r| >= {threshold}):")
        for item in strong_corr:
            direction = "positive" if item["correlation"] > 0 else "negative"
            print(f"  • {item['col1']} ↔ {item['col2']}: {item['correlation']:.3f} ({direction})")
    else:
        print(f"\nNo strong correlations found (|r| >= {threshold})")

    print("=" * 50 + "\n")
    return strong_corr

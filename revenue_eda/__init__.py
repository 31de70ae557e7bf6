"""
Revenue EDA
===========

Exploratory analysis and baseline models for customer revenue prediction
on analytics session exports with JSON-encoded columns.

Modules:
    - data_loader: CSV ingestion and validation
    - flattening: Nested column flattening
    - cleaning: Sentinel missing-value normalization
    - schema: Train/test schema reconciliation
    - eda: Exploratory Data Analysis
    - preprocessing: Column manifest and feature encoding
    - model: Linear and gradient-boosted baselines
    - evaluation: Validation metrics and plots
    - prediction: Per-visitor submission files
"""

__version__ = "1.0.0"
__author__ = "Predictive Analytics Team"

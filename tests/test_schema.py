"""
Test Suite for Schema Reconciliation
====================================
"""

import warnings

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from revenue_eda.errors import SchemaMismatchWarning
from revenue_eda.schema import (
    find_constant_columns,
    find_empty_columns,
    prepare_datasets,
    reconcile_schemas,
    schema_diff,
)


def _mismatch_warnings(caught):
    return [w for w in caught if issubclass(w.category, SchemaMismatchWarning)]


class TestColumnChecks:
    """Tests for schema_diff and the uninformative-column finders."""

    def test_schema_diff_keeps_column_order(self):
        left = pd.DataFrame(columns=['a', 'z', 'b', 'y'])
        right = pd.DataFrame(columns=['b', 'x', 'a'])

        only_left, only_right = schema_diff(left, right)

        assert only_left == ['z', 'y']
        assert only_right == ['x']

    def test_constant_columns(self):
        df = pd.DataFrame({
            'one_value': ['a', 'a', 'a'],
            'one_value_with_missing': ['a', np.nan, 'a'],
            'two_values': ['a', 'b', 'a'],
            'all_missing': [np.nan, np.nan, np.nan],
        })

        constant = find_constant_columns(df)

        assert 'one_value' in constant
        assert 'one_value_with_missing' in constant
        assert 'two_values' not in constant
        assert 'all_missing' not in constant

    def test_empty_columns(self):
        df = pd.DataFrame({
            'all_missing': [np.nan, None],
            'some': [np.nan, 1.0],
        })

        assert find_empty_columns(df) == ['all_missing']


class TestReconcileSchemas:
    """Tests for reconcile_schemas."""

    @pytest.fixture
    def train(self):
        return pd.DataFrame({
            'fullVisitorId': ['1', '2', '3'],
            'browser': ['Chrome', 'Safari', 'Chrome'],
            'socialEngagementType': ['Not Socially Engaged'] * 3,
            'transactionRevenue': [np.nan, '1000000', np.nan],
        })

    @pytest.fixture
    def test(self):
        return pd.DataFrame({
            'browser': ['Edge', 'Chrome'],
            'fullVisitorId': ['7', '8'],
            'socialEngagementType': ['Not Socially Engaged'] * 2,
        })

    def test_allowed_target_is_kept_without_warning(self, train, test):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            result = reconcile_schemas(train, test)

        assert not _mismatch_warnings(caught)
        assert 'transactionRevenue' in result['train'].columns
        assert result['train_only'] == ['transactionRevenue']
        assert result['unexpected_train_only'] == []

    def test_unexpected_train_only_column_warns_and_drops(self, train, test):
        train['campaignCode'] = ['x', 'y', 'z']

        with pytest.warns(SchemaMismatchWarning, match="campaignCode"):
            result = reconcile_schemas(train, test)

        assert 'campaignCode' not in result['train'].columns
        assert result['unexpected_train_only'] == ['campaignCode']

    def test_test_only_column_warns_and_drops(self, train, test):
        test['newField'] = ['a', 'b']

        with pytest.warns(SchemaMismatchWarning, match="newField"):
            result = reconcile_schemas(train, test)

        assert 'newField' not in result['test'].columns
        assert result['test_only'] == ['newField']

    def test_constant_columns_dropped_from_both(self, train, test):
        result = reconcile_schemas(train, test)

        assert result['constant_columns'] == ['socialEngagementType']
        assert 'socialEngagementType' not in result['train'].columns
        assert 'socialEngagementType' not in result['test'].columns

    def test_drop_constant_disabled(self, train, test):
        result = reconcile_schemas(train, test, drop_constant=False)

        assert 'socialEngagementType' in result['train'].columns
        assert result['constant_columns'] == []

    def test_allowed_columns_never_pruned(self, train, test):
        train['transactionRevenue'] = ['5', '5', '5']
        result = reconcile_schemas(train, test)

        assert 'transactionRevenue' in result['train'].columns

    def test_identical_schema_apart_from_target(self, train, test):
        result = reconcile_schemas(train, test)

        train_cols = [c for c in result['train'].columns if c != 'transactionRevenue']
        assert list(result['test'].columns) == train_cols

    def test_custom_allowed_set(self, train, test):
        with pytest.warns(SchemaMismatchWarning, match="transactionRevenue"):
            result = reconcile_schemas(train, test, allowed_train_only=[])

        assert 'transactionRevenue' not in result['train'].columns


class TestPrepareDatasets:
    """End-to-end tests for prepare_datasets."""

    @pytest.fixture
    def raw_train(self):
        return pd.DataFrame({
            'fullVisitorId': ['0001', '0002', '0003', '0004'],
            'socialEngagementType': ['Not Socially Engaged'] * 4,
            'device': [
                '{"browser": "Chrome", "flashVersion": "not available in demo dataset"}',
                '{"browser": "Safari", "flashVersion": "not available in demo dataset"}',
                '{"browser": "(not set)", "flashVersion": "not available in demo dataset"}',
                '{}',
            ],
            'totals': [
                '{"hits": "1", "pageviews": "1"}',
                '{"hits": "5", "pageviews": "4", "transactionRevenue": "25000000"}',
                '{"hits": "2", "pageviews": "2"}',
                '{"hits": "9", "pageviews": "7"}',
            ],
        })

    @pytest.fixture
    def raw_test(self):
        return pd.DataFrame({
            'fullVisitorId': ['0009', '0010'],
            'socialEngagementType': ['Not Socially Engaged'] * 2,
            'device': [
                '{"browser": "Firefox", "flashVersion": "not available in demo dataset"}',
                '{"browser": "Chrome", "flashVersion": "not available in demo dataset"}',
            ],
            'totals': [
                '{"hits": "3", "pageviews": "3"}',
                '{"hits": "1", "pageviews": "1"}',
            ],
        })

    @pytest.fixture
    def config(self):
        return {'flatten': {'nested_columns': ['device', 'totals']}}

    def test_tables_share_schema(self, raw_train, raw_test, config):
        result = prepare_datasets(raw_train, raw_test, config)

        assert list(result['train'].columns) == [
            'fullVisitorId', 'browser', 'hits', 'pageviews', 'transactionRevenue'
        ]
        assert list(result['test'].columns) == ['fullVisitorId', 'browser', 'hits', 'pageviews']

    def test_rows_preserved(self, raw_train, raw_test, config):
        result = prepare_datasets(raw_train, raw_test, config)

        assert len(result['train']) == len(raw_train)
        assert len(result['test']) == len(raw_test)
        assert result['train']['fullVisitorId'].tolist() == ['0001', '0002', '0003', '0004']

    def test_sentinels_normalized_and_pruned(self, raw_train, raw_test, config):
        result = prepare_datasets(raw_train, raw_test, config)

        assert pd.isna(result['train'].loc[2, 'browser'])
        assert 'flashVersion' in result['empty_columns']
        assert 'socialEngagementType' in result['constant_columns']
        assert result['sentinel_counts']['flashVersion'] == 3

    def test_colliding_key_in_one_table_keeps_fields_aligned(self):
        train = pd.DataFrame({
            'device': ['{"source": "dev-a", "browser": "Chrome"}',
                       '{"source": "dev-b", "browser": "Safari"}'],
            'trafficSource': ['{"source": "google"}', '{"source": "bing"}'],
        })
        test = pd.DataFrame({
            'device': ['{"browser": "Chrome"}', '{"browser": "Edge"}'],
            'trafficSource': ['{"source": "google"}', '{"source": "yahoo"}'],
        })
        config = {'flatten': {'nested_columns': ['device', 'trafficSource']}}

        with pytest.warns(SchemaMismatchWarning, match="Column 'source'"):
            result = prepare_datasets(train, test, config)

        assert result['unexpected_train_only'] == ['source']
        assert list(result['train'].columns) == ['browser', 'trafficSource.source']
        assert list(result['test'].columns) == ['browser', 'trafficSource.source']
        assert result['train']['trafficSource.source'].tolist() == ['google', 'bing']
        assert result['test']['trafficSource.source'].tolist() == ['google', 'yahoo']

    def test_warnings_point_at_caller(self, raw_train, raw_test, config):
        raw_test['newField'] = ['a', 'b']

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            prepare_datasets(raw_train, raw_test, config)

        mismatches = _mismatch_warnings(caught)
        assert mismatches
        assert all(Path(w.filename) == Path(__file__) for w in mismatches)

    def test_null_parse_policy(self, raw_train, raw_test, config):
        raw_train.loc[1, 'totals'] = '{"hits": '
        config['flatten']['on_parse_error'] = 'null'

        result = prepare_datasets(raw_train, raw_test, config)

        assert len(result['parse_errors']) == 1
        assert result['parse_errors'][0].row == 1
        assert len(result['train']) == 4


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

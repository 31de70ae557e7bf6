"""
Test Suite for Flattening Module
================================

Tests for nested-column parsing and multi-column flattening.
"""

import pytest
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from revenue_eda.errors import ParseError
from revenue_eda.flattening import (
    flatten_dataset,
    flatten_datasets,
    flatten_payload,
    flatten_records,
    parse_nested_column,
    resolve_column_names,
)


class TestParseNestedColumn:
    """Tests for parse_nested_column."""

    def test_object_and_empty_object(self):
        """Empty payloads yield an all-null row."""
        cells = pd.Series(['{"browser":"Chrome","os":"Windows"}', '{}'])
        out = parse_nested_column(cells, column='device')

        assert list(out.columns) == ['browser', 'os']
        assert out.iloc[0].tolist() == ['Chrome', 'Windows']
        assert out.iloc[1].isna().all()

    def test_row_count_preserved_for_absent_cells(self):
        cells = pd.Series(['{"a": 1}', None, '', '   ', float('nan'), '[]'])
        out = parse_nested_column(cells)

        assert len(out) == 6
        assert out['a'].tolist()[0] == 1
        assert out['a'].iloc[1:].isna().all()

    def test_schema_union_in_first_encounter_order(self):
        cells = pd.Series(['{"b": 1}', '{"a": 2, "b": 3}', '{"c": 4}'])
        out = parse_nested_column(cells)

        assert list(out.columns) == ['b', 'a', 'c']
        assert pd.isna(out.loc[0, 'a'])
        assert out.loc[1, 'a'] == 2
        assert pd.isna(out.loc[1, 'c'])

    def test_nested_key_paths(self):
        cells = pd.Series(['{"source": "google", "adwordsClickInfo": {"page": "1", "slot": "Top"}}'])
        out = parse_nested_column(cells)

        assert list(out.columns) == ['source', 'adwordsClickInfo.page', 'adwordsClickInfo.slot']

    def test_custom_delimiter(self):
        cells = pd.Series(['{"adwordsClickInfo": {"page": "1"}}'])
        out = parse_nested_column(cells, delimiter='_')

        assert list(out.columns) == ['adwordsClickInfo_page']

    def test_lists_inside_object_become_scalars(self):
        cells = pd.Series(['{"keywords": ["a", "b"], "items": [{"x": 1}], "empty": []}'])
        out = parse_nested_column(cells)

        assert out.loc[0, 'keywords'] == 'a, b'
        assert out.loc[0, 'items'] == '[{"x": 1}]'
        assert pd.isna(out.loc[0, 'empty'])

    def test_literal_decoder(self):
        cells = pd.Series(["[{'index': '4', 'value': 'EMEA'}]", "[]"])
        out = parse_nested_column(cells, column='customDimensions', decoder='literal')

        assert list(out.columns) == ['index', 'value']
        assert out.iloc[0].tolist() == ['4', 'EMEA']
        assert out.iloc[1].isna().all()

    def test_array_index_mode(self):
        cells = pd.Series(["[{'a': 1}, {'a': 2, 'b': 3}]", "[{'a': 5}]"])
        out = parse_nested_column(cells, decoder='literal', array_mode='index')

        assert list(out.columns) == ['0.a', '1.a', '1.b']
        assert out.iloc[0].tolist() == [1, 2, 3]
        assert out.loc[1, '0.a'] == 5
        assert pd.isna(out.loc[1, '1.a'])

    def test_array_index_mode_respects_max_items(self):
        cells = pd.Series(['[{"a": 1}, {"a": 2}, {"a": 3}]'])
        out = parse_nested_column(cells, array_mode='index', max_items=2)

        assert list(out.columns) == ['0.a', '1.a']

    def test_malformed_payload_raises_with_row(self):
        cells = pd.Series(['{"a": 1}', '{bad json'])

        with pytest.raises(ParseError, match="row 1") as exc_info:
            parse_nested_column(cells, column='device')

        assert exc_info.value.row == 1
        assert exc_info.value.column == 'device'
        assert exc_info.value.raw == '{bad json'

    def test_scalar_payload_is_a_parse_error(self):
        with pytest.raises(ParseError):
            parse_nested_column(pd.Series(['5']))

    def test_deeply_nested_payload_is_a_parse_error(self):
        cells = ['{"a": 1}', '[' * 100000]

        with pytest.raises(ParseError) as exc_info:
            parse_nested_column(cells, column='hits')

        assert exc_info.value.row == 1
        assert exc_info.value.column == 'hits'

    def test_deeply_nested_payload_null_policy(self):
        errors = []
        out = parse_nested_column(['{"a": 1}', '[' * 100000], column='hits',
                                  errors='null', error_log=errors)

        assert len(out) == 2
        assert pd.isna(out.iloc[1]['a'])
        assert [e.row for e in errors] == [1]

    def test_null_policy_substitutes_empty_record(self):
        errors = []
        cells = pd.Series(['{"a": 1}', '{bad json', '{"a": 3}'])
        out = parse_nested_column(cells, column='totals', errors='null', error_log=errors)

        assert len(out) == 3
        assert pd.isna(out.loc[1, 'a'])
        assert out.loc[2, 'a'] == 3
        assert len(errors) == 1
        assert errors[0].row == 1

    def test_index_is_preserved(self):
        cells = pd.Series(['{"a": 1}', '{"a": 2}'], index=[10, 20])
        out = parse_nested_column(cells)

        assert list(out.index) == [10, 20]

    def test_accepts_plain_iterables(self):
        out = parse_nested_column(['{"a": 1}', '{"b": 2}'])

        assert list(out.columns) == ['a', 'b']
        assert len(out) == 2

    def test_empty_input(self):
        out = parse_nested_column(pd.Series([], dtype=object))

        assert out.shape == (0, 0)

    def test_invalid_options(self):
        with pytest.raises(ValueError, match="decoder"):
            parse_nested_column(['{}'], decoder='yaml')
        with pytest.raises(ValueError, match="error policy"):
            parse_nested_column(['{}'], errors='ignore')


class TestFlattenPayload:
    """Tests for flatten_payload."""

    def test_non_object_array_element(self):
        assert flatten_payload(['x']) == {'value': 'x'}
        assert flatten_payload(['x', 'y'], array_mode='index') == {'0.value': 'x', '1.value': 'y'}

    def test_rejects_scalars(self):
        with pytest.raises(TypeError):
            flatten_payload(3)


class TestFlattenRecords:
    """Tests for flatten_records."""

    @pytest.fixture
    def raw(self):
        """Raw sessions with two nested columns and a non-default index."""
        return pd.DataFrame({
            'fullVisitorId': ['001', '002', '003'],
            'device': [
                '{"browser": "Chrome", "isMobile": false}',
                '{}',
                '{"browser": "Safari", "isMobile": true}',
            ],
            'totals': [
                '{"hits": "1", "transactionRevenue": "1000000"}',
                '{"hits": "3"}',
                '',
            ],
            'visitNumber': [1, 2, 3],
        }, index=[5, 6, 7])

    def test_columns_and_alignment(self, raw):
        flat = flatten_records(raw, ['device', 'totals'])

        assert list(flat.columns) == [
            'fullVisitorId', 'visitNumber', 'browser', 'isMobile', 'hits', 'transactionRevenue'
        ]
        assert list(flat.index) == [5, 6, 7]
        assert flat.loc[5, 'browser'] == 'Chrome'
        assert flat.loc[5, 'transactionRevenue'] == '1000000'
        assert flat.loc[6, 'fullVisitorId'] == '002'
        assert flat.loc[6, 'hits'] == '3'
        assert pd.isna(flat.loc[6, 'browser'])
        assert flat.loc[7, 'browser'] == 'Safari'
        assert pd.isna(flat.loc[7, 'hits'])

    def test_row_count_invariant(self, raw):
        flat = flatten_records(raw, ['device', 'totals'])

        assert len(flat) == len(raw)

    def test_nested_columns_are_dropped(self, raw):
        flat = flatten_records(raw, ['device', 'totals'])

        assert 'device' not in flat.columns
        assert 'totals' not in flat.columns

    def test_deterministic_naming(self, raw):
        first = flatten_records(raw, ['device', 'totals'])
        second = flatten_records(raw, ['device', 'totals'])

        assert list(first.columns) == list(second.columns)
        pd.testing.assert_frame_equal(first, second)

    def test_collision_with_earlier_nested_column(self):
        raw = pd.DataFrame({
            'device': ['{"source": "x"}'],
            'trafficSource': ['{"source": "google", "medium": "organic"}'],
        })
        flat = flatten_records(raw, ['device', 'trafficSource'])

        assert list(flat.columns) == ['source', 'trafficSource.source', 'medium']
        assert flat.loc[0, 'source'] == 'x'
        assert flat.loc[0, 'trafficSource.source'] == 'google'

    def test_collision_with_scalar_column(self):
        raw = pd.DataFrame({
            'browser': ['scalar'],
            'device': ['{"browser": "Chrome"}'],
        })
        flat = flatten_records(raw, ['device'])

        assert list(flat.columns) == ['browser', 'device.browser']
        assert flat.loc[0, 'browser'] == 'scalar'

    def test_prefixed_naming(self, raw):
        flat = flatten_records(raw, ['device', 'totals'], naming='prefixed')

        assert list(flat.columns) == [
            'fullVisitorId', 'visitNumber',
            'device.browser', 'device.isMobile', 'totals.hits', 'totals.transactionRevenue'
        ]

    def test_missing_nested_column(self, raw):
        with pytest.raises(KeyError, match="hits"):
            flatten_records(raw, ['device', 'hits'])

    def test_duplicate_index_labels(self, raw):
        raw.index = [0, 0, 1]
        flat = flatten_records(raw, ['device', 'totals'])

        assert list(flat.index) == [0, 0, 1]
        assert flat['browser'].tolist()[2] == 'Safari'

    def test_parse_errors_bubble_up(self, raw):
        raw.loc[6, 'totals'] = '{"hits": '

        with pytest.raises(ParseError) as exc_info:
            flatten_records(raw, ['device', 'totals'])

        assert exc_info.value.column == 'totals'
        assert exc_info.value.row == 1


class TestResolveColumnNames:
    """Tests for resolve_column_names."""

    def test_first_field_keeps_bare_name(self):
        names = resolve_column_names(
            ['browser'],
            [('device', 'browser'), ('device', 'source'), ('trafficSource', 'source')]
        )

        assert names == {
            ('device', 'browser'): 'device.browser',
            ('device', 'source'): 'source',
            ('trafficSource', 'source'): 'trafficSource.source',
        }

    def test_repeated_fields_named_once(self):
        names = resolve_column_names([], [('totals', 'hits'), ('totals', 'hits')])

        assert names == {('totals', 'hits'): 'hits'}

    def test_invalid_naming(self):
        with pytest.raises(ValueError, match="naming rule"):
            resolve_column_names([], [], naming='short')


class TestFlattenDatasets:
    """Tests for flatten_datasets."""

    @pytest.fixture
    def tables(self):
        """device.source exists only in the first table, trafficSource.source in both."""
        train = pd.DataFrame({
            'device': ['{"source": "dev-a"}', '{"source": "dev-b"}'],
            'trafficSource': ['{"source": "google"}', '{"source": "bing"}'],
        })
        test = pd.DataFrame({
            'device': ['{}', '{}'],
            'trafficSource': ['{"source": "google"}', '{"source": "yahoo"}'],
        })
        return train, test

    def test_names_shared_across_tables(self, tables):
        train_flat, test_flat = flatten_datasets(tables, ['device', 'trafficSource'])

        assert list(train_flat.columns) == ['source', 'trafficSource.source']
        assert list(test_flat.columns) == ['trafficSource.source']
        assert test_flat['trafficSource.source'].tolist() == ['google', 'yahoo']
        assert train_flat['source'].tolist() == ['dev-a', 'dev-b']

    def test_single_table_naming_differs(self, tables):
        _, test = tables

        alone = flatten_records(test, ['device', 'trafficSource'])

        assert list(alone.columns) == ['source']

    def test_absent_nested_column_skipped_per_table(self, tables):
        train, test = tables
        test = test.drop(columns=['device'])

        train_flat, test_flat = flatten_datasets([train, test], ['device', 'trafficSource'])

        assert list(train_flat.columns) == ['source', 'trafficSource.source']
        assert list(test_flat.columns) == ['trafficSource.source']


class TestFlattenDataset:
    """Tests for flatten_dataset."""

    def test_skips_absent_nested_columns(self):
        raw = pd.DataFrame({
            'fullVisitorId': ['1', '2'],
            'device': ['{"browser": "Chrome"}', '{"browser": "Firefox"}'],
        })
        flat = flatten_dataset(raw, ['device', 'hits', 'customDimensions'])

        assert list(flat.columns) == ['fullVisitorId', 'browser']

    def test_default_literal_decoders(self):
        raw = pd.DataFrame({
            'customDimensions': ["[{'index': '4', 'value': 'APAC'}]", "[]"],
        })
        flat = flatten_dataset(raw, ['customDimensions'])

        assert flat.loc[0, 'value'] == 'APAC'
        assert pd.isna(flat.loc[1, 'value'])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""
Tests for the rule-based row cleaner in strltr/data/validator.py.

Each input table is cleaned in an in-memory DuckDB connection; these tests
check the rows that survive and the per-rule counts in cleaner.stats.
"""

import duckdb
import numpy as np
import pandas as pd
import pytest

from strltr.data.validator import CleaningConfig, DataCleaner


@pytest.fixture
def raw_daily():
    return pd.DataFrame({
        'property_id': ['1', '1', '1', '1', '1', '2', '', None],
        'date': ['2016-01-01', '02/01/2016', 'garbage', '2016-01-04',
                 '2016-01-05', '2016-01-01', '2016-01-01', '2016-01-02'],
        'status': ['R', 'booked', 'booked', 'B', 'unknown', 'Available ', 'booked', 'booked'],
        'price': [100.0, 120.0, 90.0, np.nan, np.nan, -5.0, 50.0, 50.0],
        'booking_date': ['2015-12-01', 'not a date', None, None, None, None, None, None],
    })


@pytest.fixture
def raw_str_properties():
    return pd.DataFrame({
        'property_id': ['S1', 'S2', None],
        'host_id': ['h1', 'h2', 'h3'],
        'type': ['Entire home/apt', 'Private room', 'Private room'],
        'product_type': ['house', 'unit', 'unit'],
        'bedrooms': [2.0, 1.0, 1.0],
        'bathrooms': [1.0, 1.0, 1.0],
        'max_guests': [4.0, 2.0, 2.0],
        'min_stay': [2.0, 1.0, 1.0],
        'cancellation_policy': ['strict', '', 'flexible'],
        'suburb': ['Northbridge', 'Southport', 'Southport'],
        'submarket': ['North', 'South', 'South'],
    })


@pytest.fixture
def raw_snapshots():
    return pd.DataFrame({
        'address_id': ['A1', 'A1', 'A2', 'A3'],
        'transaction_id': ['T1', None, 'T3', 'T4'],
        'first_date': ['2015-01-10', '2015-02-01', '2015-03-01', '31-Jan-2015'],
        'last_date': ['2015-02-01', None, 'soon', None],
        'price': [500.0, 510.0, 0.0, 400.0],
        'last_price': [480.0, np.nan, np.nan, np.nan],
        'suburb': ['Northbridge', 'Northbridge', 'Southport', 'Southport'],
    })


class TestDailyRules:

    @pytest.fixture
    def cleaned(self, raw_daily):
        cleaner = DataCleaner()
        daily = cleaner.clean(daily=raw_daily)['daily']
        return daily.sort_values(['property_id', 'date']).reset_index(drop=True), cleaner.stats

    def test_missing_identifiers_dropped(self, cleaned):
        daily, stats = cleaned
        assert set(daily['property_id']) == {'1', '2'}
        assert stats['daily: Missing property_id'] == 2

    def test_dates_repaired_or_dropped(self, cleaned):
        daily, stats = cleaned
        assert daily['date'].tolist() == [
            pd.Timestamp('2016-01-01'), pd.Timestamp('2016-01-02'),
            pd.Timestamp('2016-01-04'), pd.Timestamp('2016-01-01'),
        ]
        assert stats['daily: Repair date'] == 1
        assert stats['daily: Unparseable date'] == 1

    def test_unparseable_secondary_date_is_nulled(self, cleaned):
        daily, stats = cleaned
        assert stats['daily: Null unparseable booking_date'] == 1
        assert daily.loc[0, 'booking_date'] == pd.Timestamp('2015-12-01')
        assert pd.isna(daily.loc[1, 'booking_date'])

    def test_status_codes_mapped(self, cleaned):
        daily, stats = cleaned
        assert daily['status'].tolist() == ['booked', 'booked', 'blocked', 'available']
        assert stats['daily: Map status codes'] == 3
        assert stats['daily: Unknown status'] == 1

    def test_non_positive_price_nulled(self, cleaned):
        daily, stats = cleaned
        assert stats['daily: Non-positive price'] == 1
        assert pd.isna(daily.loc[3, 'price'])
        assert daily.loc[0, 'price'] == 100.0

    def test_rules_can_be_disabled(self, raw_daily):
        config = CleaningConfig(map_status_codes=False, remove_unknown_status=False, verbose=False)
        cleaner = DataCleaner(config)
        daily = cleaner.clean(daily=raw_daily)['daily']

        assert 'R' in set(daily['status'])
        assert 'daily: Map status codes' not in cleaner.stats


class TestOtherTables:

    def test_str_properties(self, raw_str_properties):
        cleaner = DataCleaner()
        props = cleaner.clean(str_properties=raw_str_properties)['str_properties']
        props = props.sort_values('property_id').reset_index(drop=True)

        assert props['property_id'].tolist() == ['S1', 'S2']
        assert pd.isna(props.loc[1, 'cancellation_policy'])
        assert cleaner.stats['str_properties: Fix Empty cancellation_policy'] == 1

    def test_ltr_snapshots(self, raw_snapshots):
        cleaner = DataCleaner()
        snaps = cleaner.clean(ltr_snapshots=raw_snapshots)['ltr_snapshots']
        snaps = snaps.sort_values('transaction_id').reset_index(drop=True)

        assert snaps['transaction_id'].tolist() == ['T1', 'T3', 'T4']
        assert cleaner.stats['ltr_snapshots: Missing transaction_id'] == 1
        # Bad last_date keeps the row
        assert pd.isna(snaps.loc[1, 'last_date'])
        assert pd.isna(snaps.loc[1, 'price'])
        assert snaps.loc[2, 'first_date'] == pd.Timestamp('2015-01-31')

    def test_tables_not_given_are_skipped(self, raw_daily):
        assert set(DataCleaner().clean(daily=raw_daily)) == {'daily'}

    def test_unknown_table_rejected(self, raw_daily):
        con = duckdb.connect(":memory:")
        try:
            with pytest.raises(ValueError, match="Unknown table"):
                DataCleaner().clean_table(con, 'bookings', raw_daily)
        finally:
            con.close()

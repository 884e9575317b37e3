"""
Tests for STR revenue figures and preference flags.
"""

import numpy as np
import pandas as pd
import pytest

from strltr.config import StudyConfig
from strltr.models.revenue import assign_preferences, calculate_revenue, compute_revenue


@pytest.fixture
def config():
    return StudyConfig(cpppd=4.5, persons_per_bedroom=1.5, year_length=365)


class TestCalculateRevenue:

    def test_observed_revenue_reference_value(self, config):
        figures = calculate_revenue(10, 100.0, 2, total_days=366, block_rate=0.0, config=config)
        assert figures.avg_guests == pytest.approx(3.0)
        assert figures.act_revenue == pytest.approx(865.0)

    def test_full_year_extrapolation_equals_observed(self, config):
        figures = calculate_revenue(10, 100.0, 2, total_days=365, block_rate=0.0, config=config)
        assert figures.lik_revenue == pytest.approx(figures.act_revenue)

    def test_extrapolated_revenue(self, config):
        # 73 tracked days -> factor 5
        figures = calculate_revenue(10, 100.0, 2, total_days=73, block_rate=0.0, config=config)
        assert figures.lik_revenue == pytest.approx(10 * 5 * 100 - 10 * 3 * 4.5 * 5)

    def test_potential_revenue(self, config):
        figures = calculate_revenue(10, 100.0, 2, total_days=73, block_rate=0.2, config=config)
        # pot_occ = 50 / 292; 365 / 292 = 1.25
        assert figures.pot_occ == pytest.approx(50 / 292)
        assert figures.pot_revenue == pytest.approx(50 * 1.25 * (100 - 13.5))

    def test_negative_revenue_is_kept(self, config):
        figures = calculate_revenue(10, 10.0, 4, total_days=365, block_rate=0.0, config=config)
        assert figures.act_revenue == pytest.approx(-170.0)

    def test_missing_rate_makes_revenue_missing(self, config):
        figures = calculate_revenue(0, np.nan, 2, total_days=30, block_rate=0.5, config=config)
        assert np.isnan(figures.act_revenue)
        assert np.isnan(figures.lik_revenue)
        assert np.isnan(figures.pot_revenue)

    def test_fully_blocked_has_no_potential_occupancy(self, config):
        figures = calculate_revenue(0, 100.0, 1, total_days=30, block_rate=1.0, config=config)
        assert np.isnan(figures.pot_occ)
        assert figures.act_revenue == pytest.approx(0.0)

    def test_fx_rate_converts_nightly_price(self):
        config = StudyConfig(fx_rate=0.5)
        figures = calculate_revenue(10, 100.0, 2, total_days=366, block_rate=0.0, config=config)
        assert figures.act_revenue == pytest.approx(10 * 50 - 135)


class TestComputeRevenue:

    def test_matches_scalar_version(self, config):
        df = pd.DataFrame({
            'bookings': [10, 0, 40],
            'med_rate': [100.0, np.nan, 80.0],
            'bedrooms': [2.0, 1.0, 3.0],
            'total_days': [73, 30, 200],
            'block_rate': [0.2, 0.5, 0.1],
        })
        out = compute_revenue(df, config)

        for i, row in df.iterrows():
            scalar = calculate_revenue(row['bookings'], row['med_rate'], row['bedrooms'],
                                       row['total_days'], row['block_rate'], config)
            for col in ['act_revenue', 'lik_revenue', 'pot_occ', 'pot_revenue']:
                np.testing.assert_allclose(out.loc[i, col], getattr(scalar, col))

    def test_missing_columns_raise(self, config):
        with pytest.raises(ValueError, match="Missing columns"):
            compute_revenue(pd.DataFrame({'bookings': [1]}), config)


class TestAssignPreferences:

    @pytest.fixture
    def revenues(self):
        return pd.DataFrame({
            'property_id': ['a', 'b', 'c', 'd', 'e'],
            'act_revenue': [20000.0, 10000.0, 30000.0, np.nan, -500.0],
            'lik_revenue': [25000.0, 10000.0, 30000.0, np.nan, -500.0],
            'pot_revenue': [26000.0, 9000.0, 30000.0, np.nan, -500.0],
            'ltr_imp_revenue': [15000.0, 10000.0, np.nan, 12000.0, 1000.0],
            'imputation_tier': ['exact', 'fallback', 'unresolved', 'exact', 'exact'],
        })

    def test_strictly_greater_prefers_str(self, revenues):
        out = assign_preferences(revenues).set_index('property_id')
        assert out.loc['a', 'lik_pref'] == 1
        assert out.loc['e', 'lik_pref'] == 0

    def test_tie_does_not_prefer_str(self, revenues):
        out = assign_preferences(revenues).set_index('property_id')
        assert out.loc['b', 'act_pref'] == 0
        assert out.loc['b', 'pot_pref'] == 0

    def test_unresolved_imputation_gets_no_flag(self, revenues):
        out = assign_preferences(revenues).set_index('property_id')
        for flag in ['act_pref', 'lik_pref', 'pot_pref']:
            assert pd.isna(out.loc['c', flag])

    def test_missing_revenue_gets_no_flag(self, revenues):
        out = assign_preferences(revenues).set_index('property_id')
        assert pd.isna(out.loc['d', 'lik_pref'])

    def test_flags_are_nullable_integers(self, revenues):
        out = assign_preferences(revenues)
        assert str(out['lik_pref'].dtype) == 'Int64'
        assert out['lik_pref'].isna().sum() == 2

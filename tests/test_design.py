"""
Tests for covariate derivation and design matrices.
"""

import numpy as np
import pandas as pd
import pytest

from strltr.features.design import (
    DesignMatrixBuilder,
    add_model_covariates,
    bed_bath_config,
    guests_per_bedroom,
)


class TestCovariates:

    def test_bed_bath_labels(self):
        df = pd.DataFrame({'bedrooms': [2.0, np.nan, 1.0], 'bathrooms': [1.0, 1.0, 1.5]})
        assert bed_bath_config(df).tolist() == ['2b1b', 'NAb1b', '1b1.5b']

    def test_studio_counts_as_one_bedroom(self):
        df = pd.DataFrame({'bedrooms': [0.0, 2.0], 'max_guests': [2.0, 6.0]})
        assert guests_per_bedroom(df).tolist() == [2.0, 3.0]

    def test_add_model_covariates_does_not_modify_input(self):
        df = pd.DataFrame({'bedrooms': [1.0], 'bathrooms': [1.0], 'max_guests': [2.0]})
        out = add_model_covariates(df)
        assert 'bedbath' in out.columns
        assert 'guests_per_bedroom' in out.columns
        assert 'bedbath' not in df.columns


class TestDesignMatrixBuilder:

    @pytest.fixture
    def train(self):
        return pd.DataFrame({
            'suburb': ['B', 'A', 'C', 'A'],
            'month': [1, 2, 1, 12],
            'min_stay': [1.0, 3.0, np.nan, 2.0],
        })

    def test_levels_sorted_with_first_dropped(self, train):
        builder = DesignMatrixBuilder(categorical=['suburb'], numeric=['min_stay']).fit(train)
        assert builder.levels['suburb'] == ['A', 'B', 'C']
        assert builder.feature_names == ['intercept', 'suburb[T.B]', 'suburb[T.C]', 'min_stay']

    def test_transform_shape_and_dummies(self, train):
        X = DesignMatrixBuilder(categorical=['suburb']).fit_transform(train)
        assert X.shape == (4, 3)
        assert X[:, 0].tolist() == [1.0, 1.0, 1.0, 1.0]
        assert X[:, 1].tolist() == [1.0, 0.0, 0.0, 0.0]
        assert X[:, 2].tolist() == [0.0, 0.0, 1.0, 0.0]

    def test_unseen_level_maps_to_reference(self, train):
        builder = DesignMatrixBuilder(categorical=['suburb']).fit(train)
        new = pd.DataFrame({'suburb': ['Z', None]})

        X = builder.transform(new)
        assert X[:, 1:].sum() == 0.0
        assert builder.unseen_levels(new) == {'suburb': ['Z']}

    def test_missing_numeric_filled_with_training_mean(self, train):
        builder = DesignMatrixBuilder(numeric=['min_stay'], intercept=False).fit(train)
        X = builder.transform(pd.DataFrame({'min_stay': [np.nan, 5.0]}))
        assert X[:, 0].tolist() == [2.0, 5.0]

    def test_month_levels_are_labels(self, train):
        builder = DesignMatrixBuilder(categorical=['month']).fit(train)
        assert builder.levels['month'] == ['1', '12', '2']

    def test_transform_before_fit_raises(self, train):
        with pytest.raises(ValueError, match="fitted"):
            DesignMatrixBuilder(categorical=['suburb']).transform(train)

    def test_missing_column_raises(self, train):
        with pytest.raises(ValueError, match="Missing covariate columns"):
            DesignMatrixBuilder(categorical=['postcode']).fit(train)

"""
Covariate lists and design matrices for the study's regressions.

Models declare their covariates as plain lists (categorical and numeric)
and DesignMatrixBuilder turns a DataFrame into a numeric matrix:
intercept, one-hot dummies for categoricals (sorted levels, first level
dropped as reference) and numeric columns as-is.

Levels are learned once on training data. At prediction time an unseen or
missing level maps to the reference level (all dummies zero) and a missing
numeric value is replaced by its training mean.
"""

from typing import Dict, List, Sequence

import numpy as np
import pandas as pd


# Rent regression: log(weekly rent) ~ listing type + bed/bath + suburb FE + month FE
RENT_CATEGORICAL = ['type', 'bedbath', 'suburb', 'month']
RENT_NUMERIC: List[str] = []

# Preference models: P(pref = 1) ~ type + bed/bath + submarket + guests/bedroom
#                                  + min stay + cancellation policy
PREFERENCE_CATEGORICAL = ['type', 'bedbath', 'submarket', 'cancellation_policy']
PREFERENCE_NUMERIC = ['guests_per_bedroom', 'min_stay']


def _count_label(value) -> str:
    if pd.isna(value):
        return 'NA'
    value = float(value)
    return str(int(value)) if value.is_integer() else f"{value:g}"


def bed_bath_config(df: pd.DataFrame) -> pd.Series:
    """Bed/bath configuration label, e.g. '2b1b'; missing counts become 'NA'."""
    beds = df['bedrooms'] if 'bedrooms' in df.columns else pd.Series(np.nan, index=df.index)
    baths = df['bathrooms'] if 'bathrooms' in df.columns else pd.Series(np.nan, index=df.index)
    return beds.map(_count_label) + 'b' + baths.map(_count_label) + 'b'


def guests_per_bedroom(df: pd.DataFrame) -> pd.Series:
    """max_guests / bedrooms, counting studios (0 bedrooms) as one bedroom."""
    bedrooms = pd.to_numeric(df['bedrooms'], errors='coerce').clip(lower=1)
    return pd.to_numeric(df['max_guests'], errors='coerce') / bedrooms


def add_model_covariates(df: pd.DataFrame) -> pd.DataFrame:
    """Add derived covariate columns used by the rent and preference models."""
    df = df.copy()
    df['bedbath'] = bed_bath_config(df)
    if 'max_guests' in df.columns and 'bedrooms' in df.columns:
        df['guests_per_bedroom'] = guests_per_bedroom(df)
    return df


class DesignMatrixBuilder:
    """
    Builds design matrices from declared covariate lists.

    Usage:
        builder = DesignMatrixBuilder(categorical=['suburb', 'month'])
        X_train = builder.fit_transform(train_df)
        X_new = builder.transform(new_df)
        builder.feature_names  # ['intercept', 'suburb[T.Bondi]', ...]
    """

    def __init__(
        self,
        categorical: Sequence[str] = (),
        numeric: Sequence[str] = (),
        intercept: bool = True
    ):
        self.categorical = list(categorical)
        self.numeric = list(numeric)
        self.intercept = intercept
        self.levels: Dict[str, List[str]] = {}
        self.numeric_means: Dict[str, float] = {}
        self.is_fitted = False

    @staticmethod
    def _labels(series: pd.Series) -> pd.Series:
        return series.map(lambda v: None if pd.isna(v) else str(v))

    def fit(self, df: pd.DataFrame) -> 'DesignMatrixBuilder':
        """Learn categorical levels and numeric means from training rows."""
        missing = [c for c in self.categorical + self.numeric if c not in df.columns]
        if missing:
            raise ValueError(f"Missing covariate columns: {missing}")

        for col in self.categorical:
            labels = self._labels(df[col]).dropna()
            self.levels[col] = sorted(labels.unique())
        for col in self.numeric:
            values = pd.to_numeric(df[col], errors='coerce')
            self.numeric_means[col] = float(values.mean()) if values.notna().any() else 0.0
        self.is_fitted = True
        return self

    @property
    def feature_names(self) -> List[str]:
        names = ['intercept'] if self.intercept else []
        for col in self.categorical:
            names.extend(f"{col}[T.{level}]" for level in self.levels[col][1:])
        names.extend(self.numeric)
        return names

    def transform(self, df: pd.DataFrame) -> np.ndarray:
        """Design matrix for df using the fitted levels."""
        if not self.is_fitted:
            raise ValueError("DesignMatrixBuilder must be fitted before transform")

        n = len(df)
        blocks = []
        if self.intercept:
            blocks.append(np.ones((n, 1)))

        for col in self.categorical:
            levels = self.levels[col]
            labels = self._labels(df[col]).to_numpy() if col in df.columns else np.full(n, None)
            dummies = np.zeros((n, max(len(levels) - 1, 0)))
            for j, level in enumerate(levels[1:]):
                dummies[:, j] = labels == level
            blocks.append(dummies)

        for col in self.numeric:
            values = pd.to_numeric(df[col], errors='coerce') if col in df.columns \
                else pd.Series(np.nan, index=df.index)
            blocks.append(values.fillna(self.numeric_means[col]).to_numpy(dtype=float).reshape(-1, 1))

        if not blocks:
            return np.zeros((n, 0))
        return np.hstack(blocks)

    def fit_transform(self, df: pd.DataFrame) -> np.ndarray:
        return self.fit(df).transform(df)

    def unseen_levels(self, df: pd.DataFrame) -> Dict[str, List[str]]:
        """Categorical values in df that were not present at fit time."""
        unseen: Dict[str, List[str]] = {}
        for col in self.categorical:
            if col not in df.columns:
                continue
            labels = set(self._labels(df[col]).dropna())
            extra = sorted(labels - set(self.levels[col]))
            if extra:
                unseen[col] = extra
        return unseen

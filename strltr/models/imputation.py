"""
Segmented rent imputation for the long-term counterfactual.

For every STR property we estimate the weekly rent it would earn on a
long-term lease, from comparable LTR transactions in the same segment.

Architecture:
1. SEGMENTS: comparables and subjects are grouped by a composite key
   (product type x submarket). Tiers are tried finest first; a coarser
   tier (submarket only) is used when the exact segment has fewer than
   min_comparables comparables. The tier used is recorded per property.
2. MODEL: per segment, OLS of log(rent) on intercept + listing type +
   bed/bath configuration + suburb FE + month FE (scipy lstsq, closed form).
3. PREDICTION: exp(x.beta) averaged over the segment's month levels, since
   an STR listing has no advertised month.

Known limitation: no retransformation bias correction is applied to the
exponentiated log-scale predictions.

Properties with no tier holding enough comparables are 'unresolved': their
rent stays missing and they take no part in preference comparisons.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import numpy as np
import pandas as pd
from scipy.linalg import lstsq

from strltr.config import StudyConfig
from strltr.data.schema import StageFailure
from strltr.features.design import (
    RENT_CATEGORICAL,
    RENT_NUMERIC,
    DesignMatrixBuilder,
    add_model_covariates,
)
from strltr.parallel import parallel_map

logger = logging.getLogger(__name__)

TIER_UNRESOLVED = 'unresolved'

WEEKS_PER_DAY = 1 / 7

PREDICTION_COLUMNS = [
    'property_id',
    'ltr_imp_rent',
    'ltr_imp_revenue',
    'imputation_tier',
    'segment_key',
    'n_comparables',
]

# Stable ordering applied to comparables before fitting
COMPARABLE_ORDER = ['address_id', 'transaction_id', 'date', 'rent'] + RENT_CATEGORICAL


def format_segment_key(key: Tuple) -> str:
    """Render a composite segment key, e.g. ('unit', 'Inner West') -> 'unit|Inner West'."""
    return '|'.join('NA' if pd.isna(v) else str(v) for v in key)


@dataclass
class SegmentModel:
    """Fitted log-rent regression for one segment at one tier."""
    tier: str
    segment_key: Tuple
    n_comparables: int
    builder: DesignMatrixBuilder
    coefficients: np.ndarray
    rank: int
    r_squared: float
    month_levels: List[str] = field(default_factory=list)

    def predict_log(self, df: pd.DataFrame) -> np.ndarray:
        """Log-rent predictions, one column per month level."""
        if not self.month_levels:
            return (self.builder.transform(df) @ self.coefficients).reshape(-1, 1)
        columns = [
            self.builder.transform(df.assign(month=month)) @ self.coefficients
            for month in self.month_levels
        ]
        return np.column_stack(columns)

    def predict_rent(self, df: pd.DataFrame) -> np.ndarray:
        """Weekly rent level: mean over months of exp(log prediction)."""
        return np.exp(self.predict_log(df)).mean(axis=1)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'tier': self.tier,
            'segment_key': format_segment_key(self.segment_key),
            'n_comparables': self.n_comparables,
            'rank': self.rank,
            'r_squared': self.r_squared,
            'coefficients': dict(zip(self.builder.feature_names, self.coefficients.tolist())),
        }


def fit_segment(task: Tuple[str, Tuple, pd.DataFrame]) -> SegmentModel:
    """
    Fit the log-rent OLS for one segment.

    Args:
        task: (tier name, segment key, comparables sorted in stable order)

    Returns:
        SegmentModel
    """
    tier, key, comparables = task
    builder = DesignMatrixBuilder(categorical=RENT_CATEGORICAL, numeric=RENT_NUMERIC)
    X = builder.fit_transform(comparables)
    y = np.log(comparables['rent'].to_numpy(dtype=float))

    beta, _, rank, _ = lstsq(X, y)

    residuals = y - X @ beta
    ss_total = np.sum((y - y.mean()) ** 2)
    r_squared = float(1 - np.sum(residuals ** 2) / ss_total) if ss_total > 0 else np.nan

    return SegmentModel(
        tier=tier,
        segment_key=key,
        n_comparables=len(comparables),
        builder=builder,
        coefficients=beta,
        rank=int(rank),
        r_squared=r_squared,
        month_levels=list(builder.levels.get('month', [])),
    )


@dataclass
class ImputationResult:
    """
    Output of the imputation stage.

    Attributes:
        predictions: One row per subject property (PREDICTION_COLUMNS)
        models: Fitted SegmentModels keyed by (tier, segment key)
        failures: Unresolved properties
    """
    predictions: pd.DataFrame
    models: Dict[Tuple[str, Tuple], SegmentModel]
    failures: List[StageFailure] = field(default_factory=list)

    def coverage(self) -> pd.Series:
        """Property count per imputation tier."""
        return self.predictions['imputation_tier'].value_counts().sort_index()


class RentImputer:
    """
    Segment-scoped rent imputation with tiered fallback.

    Usage:
        imputer = RentImputer(config)
        imputer.fit(comparables)          # rows: rent, month, covariates, keys
        result = imputer.predict(subjects)  # STR properties with the same keys
    """

    def __init__(self, config: StudyConfig):
        self.config = config
        self.models: Dict[Tuple[str, Tuple], SegmentModel] = {}
        self.segment_counts: Dict[str, Dict[Tuple, int]] = {}
        self.is_fitted = False

    @staticmethod
    def _prepare_comparables(comparables: pd.DataFrame) -> pd.DataFrame:
        df = comparables[pd.to_numeric(comparables['rent'], errors='coerce') > 0].copy()
        df['rent'] = df['rent'].astype(float)
        df = add_model_covariates(df)
        order = [c for c in COMPARABLE_ORDER if c in df.columns]
        return df.sort_values(order, kind='mergesort', na_position='last').reset_index(drop=True)

    def fit(self, comparables: pd.DataFrame) -> 'RentImputer':
        """
        Fit every segment, at every tier, holding at least min_comparables.

        Segments are fitted in sorted key order and may run in parallel
        (config.n_jobs); the comparable corpus is only read.
        """
        df = self._prepare_comparables(comparables)

        tasks = []
        for tier, keys in self.config.segment_tiers:
            keyed = df.dropna(subset=list(keys))
            counts: Dict[Tuple, int] = {}
            for key, group in keyed.groupby(list(keys), sort=True):
                key = key if isinstance(key, tuple) else (key,)
                counts[key] = len(group)
                if len(group) >= self.config.min_comparables:
                    tasks.append((tier, key, group.reset_index(drop=True)))
            self.segment_counts[tier] = counts

        fitted = parallel_map(fit_segment, tasks, n_jobs=self.config.n_jobs)
        self.models = {(m.tier, m.segment_key): m for m in fitted}
        self.is_fitted = True

        if self.config.verbose:
            for tier, _ in self.config.segment_tiers:
                n_fit = sum(1 for t, _ in self.models if t == tier)
                logger.info(
                    f"Tier '{tier}': {n_fit} of {len(self.segment_counts[tier])} segments "
                    f"have >= {self.config.min_comparables} comparables"
                )
        return self

    def predict(self, subjects: pd.DataFrame) -> ImputationResult:
        """
        Impute weekly rent for every subject property.

        Args:
            subjects: STR properties with property_id, the tier key columns and
                the rent covariates (type, bedrooms, bathrooms, suburb)

        Returns:
            ImputationResult; unresolved properties have NaN rent and tier
            'unresolved'
        """
        if not self.is_fitted:
            raise ValueError("RentImputer must be fitted before predict")

        df = add_model_covariates(subjects).reset_index(drop=True)
        n = len(df)
        rent = np.full(n, np.nan)
        tier_used = np.array([TIER_UNRESOLVED] * n, dtype=object)
        segment_key = np.array([None] * n, dtype=object)
        n_comparables = np.zeros(n, dtype=np.int64)
        resolved = np.zeros(n, dtype=bool)

        for tier, keys in self.config.segment_tiers:
            pending = df[~resolved].dropna(subset=list(keys))
            for key, group in pending.groupby(list(keys), sort=True):
                key = key if isinstance(key, tuple) else (key,)
                idx = group.index.to_numpy()
                count = self.segment_counts.get(tier, {}).get(key, 0)
                # Record the count at the latest tier tried
                n_comparables[idx] = count
                segment_key[idx] = format_segment_key(key)

                model = self.models.get((tier, key))
                if model is None:
                    continue
                rent[idx] = model.predict_rent(group)
                tier_used[idx] = tier
                resolved[idx] = True

        predictions = pd.DataFrame({
            'property_id': df['property_id'].to_numpy(),
            'ltr_imp_rent': rent,
            'ltr_imp_revenue': rent * self.config.year_length * WEEKS_PER_DAY,
            'imputation_tier': tier_used,
            'segment_key': segment_key,
            'n_comparables': n_comparables,
        }, columns=PREDICTION_COLUMNS)
        predictions = predictions.sort_values('property_id', kind='mergesort').reset_index(drop=True)

        failures = [
            StageFailure(
                stage='imputation',
                unit='property',
                key=row.property_id,
                reason='InsufficientComparables',
                detail=(
                    f"segment {row.segment_key} has {row.n_comparables} comparables "
                    f"(< {self.config.min_comparables}) at every tier"
                    if row.segment_key is not None
                    else "missing segment key columns"
                ),
            )
            for row in predictions[predictions['imputation_tier'] == TIER_UNRESOLVED].itertuples()
        ]

        logger.info(
            f"Imputed rent for {int(resolved.sum()):,} of {n:,} properties "
            f"({len(failures):,} unresolved)"
        )
        return ImputationResult(predictions=predictions, models=self.models, failures=failures)

    def fit_predict(self, comparables: pd.DataFrame, subjects: pd.DataFrame) -> ImputationResult:
        return self.fit(comparables).predict(subjects)

    def model_summary(self) -> pd.DataFrame:
        """One row per fitted segment model: tier, key, n, rank, R²."""
        rows = [
            {k: v for k, v in m.to_dict().items() if k != 'coefficients'}
            for _, m in sorted(self.models.items(), key=lambda kv: (kv[0][0], format_segment_key(kv[0][1])))
        ]
        return pd.DataFrame(rows, columns=['tier', 'segment_key', 'n_comparables', 'rank', 'r_squared'])

"""
End-to-end STR vs LTR study pipeline.

Logic:
1. Clean the three inputs (row-level rules, nothing fatal)
2. Summarize the daily ledger per property (parallel by property_id)
3. Reconcile LTR snapshots into canonical properties + transaction history
4. Expand history into LTR comparables and impute rent per STR property
5. Compute STR revenue figures and preference flags
6. Classify hosts and fit preference models per host segment

Every failure is scoped to a row, property or segment and collected in
StudyResult.failures; the batch itself always completes.
"""

import logging
import pickle
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import pandas as pd

from strltr.config import StudyConfig
from strltr.data.schema import STR_COLUMNS, StageFailure, TransactionHistory
from strltr.data.validator import CleaningConfig, DataCleaner
from strltr.features.reconciliation import build_comparables, reconcile_snapshots
from strltr.features.summarizer import summarize_observations
from strltr.models.host_segments import (
    PreferenceModelSet,
    assign_host_types,
    fit_preference_models,
)
from strltr.models.imputation import RentImputer, SegmentModel
from strltr.models.revenue import assign_preferences, compute_revenue

logger = logging.getLogger(__name__)


@dataclass
class StudyResult:
    """
    Output bundle of one study run.

    Attributes:
        properties: Enriched STR properties (summary, revenue, imputed rent,
            preference flags, host type)
        canonical: Canonical LTR properties, one per address_id
        history: LTR transaction history per address_id
        comparables: LTR comparable rows used for imputation
        imputation_models: Fitted rent models keyed by (tier, segment key)
        preference_models: Logistic models per (host segment, outcome)
        failures: Row/property/segment failures reported during the run
        cleaning_stats: Rows affected per cleaning rule
        config: Configuration the run used
    """
    properties: pd.DataFrame
    canonical: pd.DataFrame
    history: TransactionHistory
    comparables: pd.DataFrame
    imputation_models: Dict[Tuple[str, Tuple], SegmentModel]
    preference_models: PreferenceModelSet
    failures: List[StageFailure] = field(default_factory=list)
    cleaning_stats: Dict[str, int] = field(default_factory=dict)
    config: Optional[StudyConfig] = None

    def failure_frame(self) -> pd.DataFrame:
        """Failures as a DataFrame, one row per affected unit."""
        return pd.DataFrame(
            [f.to_dict() for f in self.failures],
            columns=['stage', 'unit', 'key', 'reason', 'detail'],
        )

    def save(self, path: Union[str, Path]) -> Path:
        """Pickle the bundle to path."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'wb') as f:
            pickle.dump(self, f)
        logger.info(f"Study result saved to {path}")
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'StudyResult':
        with open(path, 'rb') as f:
            return pickle.load(f)


class StudyPipeline:
    """
    Runs the full study for one configuration.

    Usage:
        config = StudyConfig(window_start=date(2016, 1, 1), cpppd=4.5)
        result = StudyPipeline(config).run(daily, str_properties, ltr_snapshots)
        result.properties[['property_id', 'lik_pref', 'host_type']]
    """

    def __init__(self, config: Optional[StudyConfig] = None):
        self.config = (config or StudyConfig()).validate()

    def _clean(self, daily, str_properties, ltr_snapshots):
        cleaner = DataCleaner(CleaningConfig(
            date_formats=list(self.config.date_formats),
            verbose=self.config.verbose,
        ))
        cleaned = cleaner.clean(
            daily=daily,
            str_properties=str_properties,
            ltr_snapshots=ltr_snapshots,
        )
        return cleaned['daily'], cleaned['str_properties'], cleaned['ltr_snapshots'], cleaner.stats

    def _attach_summaries(
        self,
        str_properties: pd.DataFrame,
        summaries: pd.DataFrame,
        failures: List[StageFailure]
    ) -> pd.DataFrame:
        """Inner-join summaries; properties without in-window observations drop out."""
        props = str_properties.sort_values('property_id', kind='mergesort')
        props = props.drop_duplicates(subset=['property_id'], keep='first')

        merged = props.merge(summaries, on='property_id', how='inner', suffixes=('', '_summary'))
        missing = sorted(set(props['property_id']) - set(summaries['property_id']), key=str)
        failures.extend(
            StageFailure('summary', 'property', pid, 'NoObservations',
                         "no daily observations inside the analysis window")
            for pid in missing
        )
        return merged.reset_index(drop=True)

    def run(
        self,
        daily: pd.DataFrame,
        str_properties: pd.DataFrame,
        ltr_snapshots: pd.DataFrame,
        clean: bool = True,
    ) -> StudyResult:
        """
        Run every stage and return the output bundle.

        Args:
            daily: Daily booking ledger
            str_properties: STR listing attributes (STR_COLUMNS)
            ltr_snapshots: LTR listing snapshots
            clean: Apply row-level cleaning rules first

        Returns:
            StudyResult
        """
        config = self.config
        failures: List[StageFailure] = []
        cleaning_stats: Dict[str, int] = {}

        missing = [c for c in STR_COLUMNS if c not in str_properties.columns]
        if missing:
            raise ValueError(f"STR properties are missing columns: {missing}")

        if clean:
            logger.info("1. Cleaning inputs...")
            daily, str_properties, ltr_snapshots, cleaning_stats = self._clean(
                daily, str_properties, ltr_snapshots
            )

        logger.info("2. Summarizing daily observations...")
        summaries = summarize_observations(daily, config)

        logger.info("3. Reconciling LTR snapshots...")
        reconciliation = reconcile_snapshots(ltr_snapshots, n_jobs=config.n_jobs)
        comparables = build_comparables(reconciliation)

        properties = self._attach_summaries(str_properties, summaries, failures)

        logger.info("4. Imputing long-term rent...")
        imputer = RentImputer(config).fit(comparables)
        imputation = imputer.predict(properties)
        failures.extend(imputation.failures)
        properties = properties.merge(imputation.predictions, on='property_id', how='left')

        logger.info("5. Computing revenue and preferences...")
        properties = compute_revenue(properties, config)
        failures.extend(
            StageFailure('revenue', 'property', pid, 'MissingMedianRate',
                         "no priced booked days; revenue left missing")
            for pid in properties.loc[properties['med_rate'].isna(), 'property_id']
        )
        properties = assign_preferences(properties)

        logger.info("6. Segmenting hosts and fitting preference models...")
        properties = assign_host_types(properties, config)
        preference_models = fit_preference_models(properties, config)
        failures.extend(preference_models.failures)

        logger.info(
            f"Study complete: {len(properties):,} STR properties, "
            f"{len(reconciliation.canonical):,} LTR properties, {len(failures):,} reported failures"
        )
        return StudyResult(
            properties=properties,
            canonical=reconciliation.canonical,
            history=reconciliation.history,
            comparables=comparables,
            imputation_models=imputation.models,
            preference_models=preference_models,
            failures=failures,
            cleaning_stats=cleaning_stats,
            config=config,
        )
